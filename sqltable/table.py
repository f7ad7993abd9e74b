from __future__ import annotations
from .cache import NOT_FOUND, CacheCoordinator, FileCache, MemoryCache
from .config import DatabaseConfig, get_config
from .connection import Connection, SqliteConnectionManager
from .dialect import SqliteDialect
from .errors import tert, tressa, ConsistencyError
from .hooks import INTERRUPT, HookPipeline
from .instrumentation import SqlLogger, get_logger
from .interfaces import ConnectionManagerProtocol, DialectProtocol
from .results import Result, Row
from .shapes import FromMap, Shape, where_shape
from .statement import StatementBuilder
from .tools import _timestamp
from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterator


logger = get_logger('table')


class Table:
    """Handle for one table alias. Query shape is set fluently, then a
        verb renders the statement, runs the hooks, consults the cache,
        executes, and resets the handle's statement for the next call.
        One handle exists per alias; use `table()` or `get_instance`.
    """
    _instances: dict[tuple[str, bool], Table] = {}
    alias: str
    table_name: str
    file_cache: bool
    config: DatabaseConfig
    dialect: DialectProtocol
    manager: ConnectionManagerProtocol
    hooks: HookPipeline
    cache: CacheCoordinator
    sql_logger: SqlLogger
    statement: StatementBuilder
    from_cache: bool

    def __init__(self, alias: str, file_cache: bool = False,
                 config: DatabaseConfig|None = None,
                 manager: ConnectionManagerProtocol|None = None,
                 dialect: DialectProtocol|None = None) -> None:
        tert(type(alias) is str and len(alias) > 0, 'alias must be a non-empty str')
        self.config = config or get_config()
        self.alias = alias
        self.table_name = self.config.physical_name(alias)
        self.file_cache = bool(file_cache)
        self.dialect = dialect or SqliteDialect()
        self.manager = manager or SqliteConnectionManager.instance()
        tert(isinstance(self.dialect, DialectProtocol),
            'dialect must implement DialectProtocol')
        tert(isinstance(self.manager, ConnectionManagerProtocol),
            'manager must implement ConnectionManagerProtocol')
        self.hooks = HookPipeline()
        self.cache = CacheCoordinator(
            MemoryCache.instance(),
            FileCache.for_path(self.config.file_cache_path),
            self.config.cache_enabled,
        )
        self.sql_logger = SqlLogger(self.config.operation_log, self.config.no_log_tables)
        self.statement = StatementBuilder(self.table_name, self.dialect)
        self.from_cache = False
        self._uncache_once = False
        self._depth = 0
        self._columns = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(alias='{self.alias}', " + \
            f"table_name='{self.table_name}', file_cache={self.file_cache})"

    @classmethod
    def get_instance(cls, alias: str, file_cache: bool = False) -> Table:
        """The memoized handle for the alias. Handles built under an
            earlier configuration are replaced.
        """
        config = get_config()
        key = (alias, bool(file_cache))
        instance = cls._instances.get(key)
        if instance is None or instance.config is not config:
            instance = cls(alias, file_cache, config)
            cls._instances[key] = instance
        return instance

    @classmethod
    def reset(cls) -> None:
        """Forget every handle, the shared memory cache, and the shared
            connection manager.
        """
        cls._instances.clear()
        MemoryCache.reset()
        SqliteConnectionManager.reset()

    # statement state

    def clear(self) -> Table:
        """Replace the statement with an empty one."""
        self.statement = StatementBuilder(self.table_name, self.dialect)
        return self

    @contextmanager
    def _operation(self) -> Generator[StatementBuilder, None, None]:
        """Scope of one public verb. The statement is cleared once, when
            the verb finishes or fails. A verb called while another is
            running, e.g. from a hook, runs on a fresh statement and
            leaves the running one untouched.
        """
        if self._depth > 0:
            with self._isolated():
                with self._operation() as statement:
                    yield statement
            return

        self._depth += 1
        try:
            yield self.statement
        finally:
            self._depth -= 1
            if self._depth == 0:
                self.clear()

    @contextmanager
    def _isolated(self) -> Generator[None, None, None]:
        """Run nested verbs on a fresh statement, restoring the current
            one afterwards.
        """
        saved = (self.statement, self._depth, self._uncache_once)
        self.statement = StatementBuilder(self.table_name, self.dialect)
        self._depth = 0
        self._uncache_once = False
        try:
            yield
        finally:
            self.statement, self._depth, self._uncache_once = saved

    def fields(self, fields: Any) -> Table:
        self.statement.fields(fields)
        return self

    def where(self, where: Any) -> Table:
        self.statement.where(where)
        return self

    def order_by(self, order_by: Any) -> Table:
        self.statement.order_by(order_by)
        return self

    def group_by(self, group_by: Any) -> Table:
        self.statement.group_by(group_by)
        return self

    def having(self, having: Any) -> Table:
        self.statement.having(having)
        return self

    def limit(self, limit: Any) -> Table:
        self.statement.limit(limit)
        return self

    def distinct(self, distinct: bool = True) -> Table:
        self.statement.distinct(distinct)
        return self

    def join(self, table: str|Table, on: Any = None, kind: str = 'join') -> Table:
        """Join another table by alias or handle. The on condition may
            be given here or with `on`. Raises ConsistencyError if the
            previous join has no on condition.
        """
        name = table.table_name if isinstance(table, Table) else self.config.physical_name(table)
        self.statement.join(kind, name, on)
        return self

    def left_join(self, table: str|Table, on: Any = None) -> Table:
        return self.join(table, on, 'left')

    def right_join(self, table: str|Table, on: Any = None) -> Table:
        return self.join(table, on, 'right')

    def inner_join(self, table: str|Table, on: Any = None) -> Table:
        return self.join(table, on, 'inner')

    def outer_join(self, table: str|Table, on: Any = None) -> Table:
        return self.join(table, on, 'outer')

    def on(self, condition: Any) -> Table:
        """Set the on condition of the last join."""
        self.statement.on(condition)
        return self

    def disable_cache(self) -> Table:
        """Skip the cache for the next read only."""
        self._uncache_once = True
        return self

    # hooks

    def hook_before(self, verb: str, hook: Callable) -> Table:
        """Register a before hook for insert, update, delete, crease,
            execute, query, or select.
        """
        self.hooks.add_before(verb, hook)
        return self

    def hook_after(self, verb: str, hook: Callable) -> Table:
        """Register an after hook for insert, update, delete, crease,
            execute, query, or select.
        """
        self.hooks.add_after(verb, hook)
        return self

    # execution

    def _read_connection(self) -> Connection:
        role = 'write' if self.manager.depth > 0 else 'read'
        return self.manager.connect(self.alias, role)

    def _write_connection(self) -> Connection:
        return self.manager.connect(self.alias, 'write')

    def _guard(self, statement: StatementBuilder) -> None:
        """Unless multi-table mode is on, the statement must touch this
            handle's table and, for raw sql, no other.
        """
        if self.config.enable_multi:
            return
        tables = statement.tables
        if statement.operation in ('query', 'execute'):
            if len(tables) > 1:
                raise ConsistencyError(
                    f'{self.alias} cannot run sql touching several tables: {tables}'
                )
            if tables and tables[0] != self.table_name:
                raise ConsistencyError(
                    f'{self.alias} cannot run sql against {tables[0]}'
                )
        elif not tables or tables[0] != self.table_name:
            raise ConsistencyError(f'{self.alias} cannot run statement against {tables}')

    def _cache_active(self) -> bool:
        """Reads inside an open transaction are never cached."""
        active = self.cache.active(self.file_cache, self._uncache_once) \
            and self.manager.depth == 0
        self._uncache_once = False
        return active

    def _run_fetch(self, statement: StatementBuilder) -> list[dict]:
        started = self.sql_logger.before(statement.operation, statement.sql)
        rows = self.manager.fetch(self._read_connection(), statement.prepare, statement.params)
        self.sql_logger.after(
            statement.operation, statement.sql, statement.params, started, len(rows)
        )
        return rows

    def _fetch(self) -> list[dict]:
        """Render and run the current read through the cache. Reads
            whose tables cannot be determined are never cached.
        """
        statement = self.statement.create()
        self._guard(statement)
        self.from_cache = False
        use_cache = self._cache_active() and len(statement.tables) > 0

        if use_cache:
            cached = self.cache.lookup(statement.sql, self.file_cache)
            if cached is not NOT_FOUND:
                self.from_cache = True
                return cached

        rows = self._run_fetch(statement)
        if use_cache:
            self.cache.store(statement.sql, statement.tables, rows, self.file_cache)
        return rows

    def _snapshot(self, condition: Shape|None) -> list[dict]|None:
        """Rows matching the condition, or None if there are more than
            20 of them.
        """
        statement = StatementBuilder(self.table_name, self.dialect)
        statement.select('*', condition, None, 21).create()
        rows = self._run_fetch(statement)
        return rows if len(rows) <= 20 else None

    def _write(self) -> int:
        """Render and execute the current mutation, invalidate the cache
            for its tables, and report it to the operation log.
        """
        statement = self.statement.create()
        self._guard(statement)
        operation = statement.operation
        recording = self.sql_logger.records(self.table_name) and operation != 'execute'

        before = None
        if recording and operation in ('update', 'crease', 'delete', 'delete_all'):
            before = self._snapshot(statement.condition)

        started = self.sql_logger.before(operation, statement.sql)
        affected = self.manager.execute(
            self._write_connection(), statement.prepare, statement.params
        )
        elapsed = self.sql_logger.after(
            operation, statement.sql, statement.params, started, affected
        )
        self.cache.invalidate(statement.tables or [self.table_name])

        if recording:
            after = None
            if operation in ('update', 'crease') and before is not None:
                ids = [r.get('id') for r in before if r.get('id') is not None]
                after = self._snapshot(
                    where_shape({'id': ids}) if len(ids) == len(before)
                    else statement.condition
                )
            elif operation in ('insert', 'insert_ignore', 'replace'):
                last = self.manager.last_inserted_id(self._write_connection())
                after = self._snapshot(FromMap((('rowid', last),))) if last else []
            self.sql_logger.record(self.table_name, operation, {
                'sql': statement.sql,
                'params': statement.params,
                'elapsed': elapsed,
                'affected': affected,
                'before': before,
                'after': after,
            })
        return affected

    def _auto_fields(self, row: dict, created: bool) -> dict:
        if not self.config.auto_field:
            return row
        columns = self.meta()
        now = _timestamp()
        names = ('created', 'updated') if created else ('updated',)
        for name in names:
            if name in columns and name not in row:
                row[name] = now
        return row

    def _inserted_id(self, operation: str, row: dict) -> int|Any:
        """The identifier an insert-like verb returns: the generated id
            for insert; the generated id, else the row's id, else 0
            for insert_ignore; the generated id or the row's id for
            replace.
        """
        last = self.manager.last_inserted_id(self._write_connection())
        if operation == 'insert':
            return last
        if operation == 'insert_ignore':
            return last or row.get('id') or 0
        return last or row.get('id')

    # writes

    def _insert(self, operation: str, row: dict) -> int|Any|None:
        tert(isinstance(row, dict), 'row must be dict')
        with self._operation():
            before = self.hooks.before('insert', operation, row)
            if before is INTERRUPT:
                return None
            operation, row = before.args
            row = {k: v for k, v in row.items() if v is not None}
            row = self._auto_fields(row, created=True)
            getattr(self.statement, operation)(row)
            self._write()
            return self.hooks.after('insert', operation, self._inserted_id(operation, row))

    def insert(self, row: dict) -> int|None:
        """Insert a row and return the generated id. None values are
            left to column defaults. Returns None if a hook interrupts.
        """
        return self._insert('insert', row)

    def insert_ignore(self, row: dict) -> int|Any|None:
        """Insert a row unless it conflicts with an existing one. Returns
            the generated id, else the row's id, else 0.
        """
        return self._insert('insert_ignore', row)

    def replace(self, row: dict) -> int|Any|None:
        """Insert or replace a row and return its id."""
        return self._insert('replace', row)

    def inserts(self, rows: list[dict]) -> int|None:
        """Insert several rows in one statement and return the number
            inserted. The first row's keys are the column list.
        """
        tert(isinstance(rows, (list, tuple)) and len(rows) > 0,
            'rows must be a non-empty list of dict')
        with self._operation():
            prepared = []
            for row in rows:
                before = self.hooks.before('insert', 'inserts', row)
                if before is INTERRUPT:
                    return None
                prepared.append(self._auto_fields(dict(before.args[1]), created=True))
            self.statement.inserts(prepared)
            return self.hooks.after('insert', 'inserts', self._write())

    def update(self, row: dict, where: Any = None) -> int|None:
        """Update matching rows and return the affected count. Raises
            ConsistencyError when there is no where condition.
        """
        tert(isinstance(row, dict), 'row must be dict')
        with self._operation():
            before = self.hooks.before('update', row, where)
            if before is INTERRUPT:
                return None
            row, where = before.args
            self.statement.update(self._auto_fields(dict(row), created=False), where)
            return self.hooks.after('update', self._write())

    def delete(self, where: Any = None) -> int|None:
        """Delete matching rows and return the affected count. Raises
            ConsistencyError when there is no where condition.
        """
        with self._operation():
            before = self.hooks.before('delete', where)
            if before is INTERRUPT:
                return None
            self.statement.delete(before.args[0])
            return self.hooks.after('delete', self._write())

    def delete_all(self) -> int|None:
        """Delete every row of the table."""
        with self._operation():
            before = self.hooks.before('delete', None)
            if before is INTERRUPT:
                return None
            if before.args[0] is None:
                self.statement.delete_all()
            else:
                self.statement.delete(before.args[0])
            return self.hooks.after('delete', self._write())

    def _crease(self, operator: str, fields: Any, where: Any, diff: int|float) -> int:
        with self._operation():
            before = self.hooks.before('crease', operator, fields, where, diff)
            if before is INTERRUPT:
                return 0
            self.statement.crease(*before.args)
            return self.hooks.after('crease', self._write())

    def increase(self, fields: str|list|dict, where: Any = None,
                 diff: int|float = 1) -> int:
        """Add diff to each field of the matching rows."""
        return self._crease('+', fields, where, diff)

    def decrease(self, fields: str|list|dict, where: Any = None,
                 diff: int|float = 1) -> int:
        """Subtract diff from each field of the matching rows."""
        return self._crease('-', fields, where, diff)

    def execute(self, sql: str, bind: Any = None) -> int|None:
        """Execute raw sql and return the affected count. Raises
            ConsistencyError if the sql names another table or several
            tables outside multi-table mode.
        """
        with self._operation():
            before = self.hooks.before('execute', sql, bind)
            if before is INTERRUPT:
                return None
            self.statement.execute(*before.args)
            return self.hooks.after('execute', self._write())

    # reads

    def query_raw(self, sql: str, bind: Any = None) -> list[dict]:
        """Run a raw query and return its rows as dicts."""
        with self._operation():
            before = self.hooks.before('query', sql, bind)
            if before is INTERRUPT:
                return []
            self.statement.query(*before.args)
            return self.hooks.after('query', self._fetch())

    def query(self, sql: str, bind: Any = None) -> Result:
        """Run a raw query. Raises ConsistencyError if the sql names
            another table or several tables outside multi-table mode.
        """
        return Result(self, self.query_raw(sql, bind))

    def select_array(self, fields: Any = None, where: Any = None,
                     order_by: Any = None, limit: Any = None) -> list[dict]:
        """Select rows as dicts. Arguments left as None use the values
            set fluently.
        """
        with self._operation():
            before = self.hooks.before('select', fields, where, order_by, limit)
            if before is INTERRUPT:
                return []
            self.statement.select(*before.args)
            return self.hooks.after('select', self._fetch())

    def select(self, fields: Any = None, where: Any = None,
               order_by: Any = None, limit: Any = None) -> Result:
        """Select rows as a Result."""
        return Result(self, self.select_array(fields, where, order_by, limit))

    def select_handle(self, fields: Any = None, where: Any = None,
                      order_by: Any = None, limit: Any = None) -> Iterator[dict]:
        """Select rows lazily in unbuffered mode, bypassing the cache.
            Buffered mode is restored once the iterator is exhausted or
            closed.
        """
        with self._operation():
            before = self.hooks.before('select', fields, where, order_by, limit)
            if before is INTERRUPT:
                return iter(())
            statement = self.statement.select_handle(*before.args).create()
            self._guard(statement)
            self.sql_logger.before(statement.operation, statement.sql)
            rows = self.manager.iterate(
                self._read_connection(), statement.prepare, statement.params
            )
            return self.hooks.after('select', rows)

    def sql(self, fields: Any = None, where: Any = None, order_by: Any = None,
            limit: Any = None) -> str:
        """Render the select without running it."""
        with self._operation():
            return self.statement.select(fields, where, order_by, limit).create().sql

    def exist(self, where: Any = None) -> bool:
        """True if any row matches."""
        with self._operation():
            self.statement.exist(where)
            rows = self._fetch()
            return bool(rows and rows[0].get('cnt'))

    def not_exist(self, where: Any = None) -> bool:
        return not self.exist(where)

    def row(self, fields: Any = None, where: Any = None, order_by: Any = None) -> Row:
        """The first matching row, or an empty Row."""
        rows = self.select_array(fields, where, order_by, 1)
        return Row(self, rows[0] if rows else {})

    def get(self, fields: Any = None, where: Any = None, order_by: Any = None) -> Any:
        """The first value of the first matching row, or None."""
        rows = self.select_array(fields, where, order_by, 1)
        if not rows or not rows[0]:
            return None
        return next(iter(rows[0].values()))

    def get_int(self, fields: Any = None, where: Any = None, order_by: Any = None) -> int:
        return int(self.get(fields, where, order_by) or 0)

    def get_float(self, fields: Any = None, where: Any = None, order_by: Any = None) -> float:
        return float(self.get(fields, where, order_by) or 0)

    def get_id(self, where: Any = None, order_by: Any = None) -> int:
        """The primary key of the first matching row, or 0."""
        return self.get_int(self.primary_key() or 'id', where, order_by)

    def col(self, fields: Any = None, where: Any = None, order_by: Any = None,
            limit: Any = None) -> list|dict:
        """The first column of the matching rows as a list. When two
            columns are selected, a dict mapping the first to the
            second.
        """
        rows = self.select_array(fields, where, order_by, limit)
        if rows and len(rows[0]) >= 2:
            return {
                values[0]: values[1]
                for values in [list(r.values()) for r in rows]
            }
        return [next(iter(r.values())) for r in rows if r]

    def count(self, where: Any = None) -> int:
        """The number of matching rows."""
        return self.get_int({'count(*)': 'cnt'}, where)

    def sum(self, field: str, where: Any = None) -> float:
        """The sum of a field over the matching rows."""
        tert(type(field) is str and len(field) > 0, 'field must be a non-empty str')
        return self.get_float({f'sum({self.dialect.mark_field(field)})': 'total'}, where)

    # introspection; not cached and not guarded

    def _introspect(self, sql: str, params: list = ()) -> list[dict]:
        return self.manager.fetch(self._read_connection(), sql, list(params))

    def meta(self, name: str|None = None) -> dict:
        """Column metadata keyed by column name, or the metadata of one
            column.
        """
        if self._columns is None:
            self._columns = self.dialect.parse_describe(
                self._introspect(self.dialect.describe_sql(self.table_name))
            )
        if name is None:
            return self._columns
        return self._columns.get(name, {})

    def primary_key(self) -> str|None:
        """The name of the first primary key column, or None."""
        for name, column in self.meta().items():
            if column['primary_key']:
                return name
        return None

    def index(self, name: str|None = None) -> dict:
        """Indexes keyed by name, each with its uniqueness and columns."""
        indexes = {}
        for entry in self._introspect(self.dialect.indexes_sql(self.table_name)):
            columns = self._introspect(self.dialect.index_info_sql(entry['name']))
            indexes[entry['name']] = {
                'table_name': self.table_name,
                'is_unique': bool(entry.get('unique')),
                'columns': [c['name'] for c in sorted(columns, key=lambda c: c['seqno'])],
            }
        if name is None:
            return indexes
        return indexes.get(name, {})

    def create_statement(self) -> str:
        """The statement that created the table."""
        sql, params = self.dialect.create_table_sql(self.table_name)
        rows = self._introspect(sql, params)
        return rows[0]['sql'] if rows else ''

    def foreign_keys(self, name: str|None = None) -> dict:
        """Foreign keys keyed by local column, each naming the remote
            table and column.
        """
        keys = self.dialect.parse_foreign_keys(self.create_statement())
        if name is None:
            return keys
        return keys.get(name, {})

    def show_tables(self) -> list[str]:
        return [r['name'] for r in self._introspect(self.dialect.show_tables_sql())]

    # transactions

    def _transactions_allowed(self) -> None:
        if self.config.enable_multi:
            raise ConsistencyError('transactions are unavailable in multi-table mode')

    def begin(self) -> int:
        """Open a transaction, nested if one is already open, and return
            the new depth. Reads use the write connection until it
            closes.
        """
        self._transactions_allowed()
        depth = self.manager.begin(self._write_connection())
        logger.debug('begin on %s, depth %s', self.alias, depth)
        return depth

    def commit(self) -> int:
        """Commit the innermost transaction. Raises ConsistencyError if
            none is open.
        """
        self._transactions_allowed()
        return self.manager.commit(self._write_connection())

    def rollback(self) -> int:
        """Roll back the innermost transaction. Raises ConsistencyError
            if none is open.
        """
        self._transactions_allowed()
        return self.manager.rollback(self._write_connection())


def table(alias: str|None = None, file_cache: bool = False) -> Table:
    """The handle for a table alias, defaulting to the configured
        default table. Raises UsageError if there is neither.
    """
    alias = alias or get_config().default_table
    tressa(type(alias) is str and len(alias) > 0, 'a table alias is required')
    return Table.get_instance(alias, file_cache)
