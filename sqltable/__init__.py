"""
    Sqltable is a table-centric data access package: fluent statement
    building with parametrized rendering, per-table result caching,
    before/after hooks around every verb, relation resolution across
    tables and document collections, and an active-record layer. The
    majority of useful features are exposed from the root level of the
    package.
"""

from sqltable.table import Table, table
from sqltable.statement import StatementBuilder
from sqltable.dialect import SqliteDialect
from sqltable.shapes import (
    FromRaw,
    FromList,
    FromMap,
    fields_shape,
    where_shape,
    order_shape,
    group_shape,
    limit_shape,
)
from sqltable.hooks import HookPipeline, Continue, Interrupt, INTERRUPT
from sqltable.cache import (
    NOT_FOUND,
    MemoryCache,
    FileCache,
    CacheCoordinator,
    no_cache,
)
from sqltable.connection import (
    Connection,
    TransactionState,
    SqliteConnectionManager,
)
from sqltable.config import DatabaseConfig, configure, get_config
from sqltable.instrumentation import SqlLogger, get_logger
from sqltable.results import Row, Result
from sqltable.record import Record, ResultSet
from sqltable.relations import (
    Relation,
    HasOne,
    HasMany,
    BelongsTo,
    BelongsToMany,
    has_one,
    has_many,
    belongs_to,
    belongs_to_many,
    parse_relation,
)
from sqltable.interfaces import (
    DialectProtocol,
    ConnectionManagerProtocol,
    CacheBackendProtocol,
    CollectionProtocol,
    DocumentCursorProtocol,
    RecordProtocol,
    RelationProtocol,
)
from sqltable.errors import (
    UsageError,
    TableError,
    ConsistencyError,
    RelationFormatError,
    BindError,
    UnsupportedOperationError,
    RecordLoadError,
)
from sqltable.version import version
