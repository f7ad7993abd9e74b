from __future__ import annotations
from .errors import (
    tert,
    vert,
    ConsistencyError,
    UnsupportedOperationError,
)
from .interfaces import DialectProtocol
from .shapes import (
    Shape,
    fields_shape,
    group_shape,
    limit_shape,
    order_shape,
    where_shape,
)
from copy import copy
from typing import Any


class StatementBuilder:
    """Accumulates the shape of one operation and renders it into a
        literal statement (`sql`), a prepared statement (`prepare`), the
        parameters bound to the prepared statement (`params`), and the
        names of the tables it touches (`tables`). Setters return self.
    """
    operations: tuple[str] = (
        'query', 'execute', 'select', 'select_handle', 'insert', 'inserts',
        'insert_ignore', 'replace', 'update', 'delete', 'delete_all',
        'crease', 'exist',
    )
    read_operations: tuple[str] = ('query', 'select', 'select_handle', 'exist')

    table: str
    dialect: DialectProtocol
    operation: str|None
    sql: str
    prepare: str
    params: list|dict
    tables: list[str]

    def __init__(self, table: str, dialect: DialectProtocol) -> None:
        tert(type(table) is str, 'table must be str')
        tert(isinstance(dialect, DialectProtocol), 'dialect must implement DialectProtocol')
        self.table = table
        self.dialect = dialect
        self.operation = None
        self._fields = None
        self._where = None
        self._order_by = None
        self._limit = None
        self._group_by = None
        self._having = None
        self._distinct = False
        self._joins: list[tuple[str, str]] = []
        self._ons: list[Shape] = []
        self._row = None
        self._rows = None
        self._raw = None
        self._bind: list|dict = []
        self._operator = None
        self._diffs = None
        self.sql = ''
        self.prepare = ''
        self.params = []
        self.tables = []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(table='{self.table}', " + \
            f"operation={self.operation!r}, sql={self.sql!r})"

    def copy(self) -> StatementBuilder:
        """Return an independent copy of the accumulated state."""
        clone = copy(self)
        clone._joins = list(self._joins)
        clone._ons = list(self._ons)
        clone.params = copy(self.params)
        clone.tables = list(self.tables)
        return clone

    def is_null(self) -> bool:
        """True if no operation has been chosen."""
        return self.operation is None

    def is_query(self) -> bool:
        """True if the operation reads rather than writes."""
        return self.operation in self.read_operations

    @property
    def condition(self) -> Shape|None:
        """The normalized where condition."""
        return self._where

    def fields(self, fields: Any) -> StatementBuilder:
        self._fields = fields_shape(fields)
        return self

    def where(self, where: Any) -> StatementBuilder:
        self._where = where_shape(where)
        return self

    def order_by(self, order_by: Any) -> StatementBuilder:
        self._order_by = order_shape(order_by)
        return self

    def limit(self, limit: Any) -> StatementBuilder:
        self._limit = limit_shape(limit)
        return self

    def group_by(self, group_by: Any) -> StatementBuilder:
        self._group_by = group_shape(group_by)
        return self

    def having(self, having: Any) -> StatementBuilder:
        self._having = where_shape(having)
        return self

    def distinct(self, distinct: bool = True) -> StatementBuilder:
        self._distinct = bool(distinct)
        return self

    def join(self, kind: str, table: str, on: Any = None) -> StatementBuilder:
        """Add a join. The previous join must already have its on
            condition. Raises ConsistencyError otherwise.
        """
        vert(kind in self.dialect.join_kinds, f'unknown join kind: {kind}')
        tert(type(table) is str and len(table) > 0, 'join table must be a non-empty str')
        if len(self._joins) > len(self._ons):
            raise ConsistencyError('previous join has no on condition')
        self._joins.append((kind, table))
        if on is not None:
            self.on(on)
        return self

    def on(self, condition: Any) -> StatementBuilder:
        """Set the on condition for the most recent join. Raises
            ConsistencyError if there is no join waiting for one.
        """
        if len(self._ons) >= len(self._joins):
            raise ConsistencyError('on condition without a matching join')
        shape = where_shape(condition)
        vert(shape is not None, 'on condition must not be empty')
        self._ons.append(shape)
        return self

    def _select_args(self, fields: Any, where: Any, order_by: Any, limit: Any) -> None:
        if fields is not None:
            self.fields(fields)
        if where is not None:
            self.where(where)
        if order_by is not None:
            self.order_by(order_by)
        if limit is not None:
            self.limit(limit)

    def query(self, sql: str, bind: Any = None) -> StatementBuilder:
        return self._raw_statement('query', sql, bind)

    def execute(self, sql: str, bind: Any = None) -> StatementBuilder:
        return self._raw_statement('execute', sql, bind)

    def _raw_statement(self, operation: str, sql: str, bind: Any) -> StatementBuilder:
        tert(type(sql) is str, 'sql must be str')
        vert(len(sql.strip()) > 0, 'sql must not be empty')
        self.operation = operation
        self._raw = sql
        if bind is None:
            self._bind = []
        elif isinstance(bind, dict):
            self._bind = dict(bind)
        elif isinstance(bind, (list, tuple)):
            self._bind = list(bind)
        else:
            self._bind = [bind]
        return self

    def select(self, fields: Any = None, where: Any = None, order_by: Any = None,
               limit: Any = None) -> StatementBuilder:
        """Select rows; arguments left as None keep the values set
            through the fluent setters.
        """
        self.operation = 'select'
        self._select_args(fields, where, order_by, limit)
        return self

    def select_handle(self, fields: Any = None, where: Any = None,
                      order_by: Any = None, limit: Any = None) -> StatementBuilder:
        self.operation = 'select_handle'
        self._select_args(fields, where, order_by, limit)
        return self

    def exist(self, where: Any = None) -> StatementBuilder:
        self.operation = 'exist'
        if where is not None:
            self.where(where)
        return self

    def insert(self, row: dict) -> StatementBuilder:
        return self._single_row('insert', row)

    def insert_ignore(self, row: dict) -> StatementBuilder:
        return self._single_row('insert_ignore', row)

    def replace(self, row: dict) -> StatementBuilder:
        return self._single_row('replace', row)

    def _single_row(self, operation: str, row: dict) -> StatementBuilder:
        tert(isinstance(row, dict), 'row must be dict')
        self.operation = operation
        self._row = dict(row)
        return self

    def inserts(self, rows: list[dict]) -> StatementBuilder:
        tert(isinstance(rows, (list, tuple)), 'rows must be list[dict]')
        tert(all([isinstance(r, dict) for r in rows]), 'rows must be list[dict]')
        self.operation = 'inserts'
        self._rows = [dict(r) for r in rows]
        return self

    def update(self, row: dict, where: Any = None) -> StatementBuilder:
        tert(isinstance(row, dict), 'row must be dict')
        self.operation = 'update'
        self._row = dict(row)
        if where is not None:
            self.where(where)
        return self

    def crease(self, operator: str, fields: str|list|dict, where: Any = None,
               diff: int|float = 1) -> StatementBuilder:
        """Add (+) or subtract (-) diff from each field. A dict maps
            fields to their own diffs.
        """
        vert(operator in ('+', '-'), 'operator must be + or -')
        if isinstance(fields, dict):
            diffs = dict(fields)
        elif isinstance(fields, str):
            diffs = {f.strip(): diff for f in fields.split(',') if f.strip()}
        else:
            tert(isinstance(fields, (list, tuple)), 'fields must be str, list, or dict')
            diffs = {f: diff for f in fields}
        tert(all([type(d) in (int, float) for d in diffs.values()]),
            'diff must be int or float')
        self.operation = 'crease'
        self._operator = operator
        self._diffs = diffs
        if where is not None:
            self.where(where)
        return self

    def delete(self, where: Any = None) -> StatementBuilder:
        self.operation = 'delete'
        if where is not None:
            self.where(where)
        return self

    def delete_all(self) -> StatementBuilder:
        self.operation = 'delete_all'
        return self

    def create(self) -> StatementBuilder:
        """Render sql, prepare, params, and tables from the current
            state. Rendering is repeatable. Raises
            UnsupportedOperationError for a missing or unknown
            operation and ConsistencyError for an update or delete
            without a where condition.
        """
        if self.operation not in self.operations:
            raise UnsupportedOperationError(f'unsupported operation: {self.operation}')
        render = getattr(self, f'_create_{self.operation}')
        self.sql, self.prepare, self.params, self.tables = render()
        return self

    def _required_where(self) -> tuple[str, str, list]:
        where = self.dialect.render_where(self._where)
        if not where[1].strip():
            raise ConsistencyError(
                f'{self.operation} on {self.table} requires a where condition'
            )
        return where

    def _select_parts(self) -> tuple[str, str, list]:
        if len(self._joins) != len(self._ons):
            raise ConsistencyError('join has no on condition')
        dialect = self.dialect
        where = dialect.render_where(self._where)
        having = dialect.render_having(self._having)
        joins = dialect.render_joins([
            (kind, table, on) for (kind, table), on in zip(self._joins, self._ons)
        ])
        head = 'select ' + ('distinct ' if self._distinct else '') + \
            f'{dialect.render_fields(self._fields)} from {dialect.mark_field(self.table)}{joins}'
        group = dialect.render_group_by(self._group_by)
        tail = dialect.render_order_by(self._order_by) + dialect.render_limit(self._limit)

        def assemble(index: int) -> str:
            sql = head
            if where[index]:
                sql += f' where {where[index]}'
            sql += group
            if having[index]:
                sql += f' having {having[index]}'
            return sql + tail

        return (assemble(0), assemble(1), [*where[2], *having[2]])

    def _tables(self) -> list[str]:
        tables = [self.table]
        for _, table in self._joins:
            if table not in tables:
                tables.append(table)
        return tables

    def _create_select(self) -> tuple:
        return (*self._select_parts(), self._tables())

    def _create_select_handle(self) -> tuple:
        return self._create_select()

    def _create_exist(self) -> tuple:
        sql, prepare, params = self._select_parts()
        return (
            self.dialect.render_exist(sql),
            self.dialect.render_exist(prepare),
            params,
            self._tables(),
        )

    def _create_query(self) -> tuple:
        return (
            self.dialect.interpolate(self._raw, self._bind),
            self._raw,
            copy(self._bind),
            self.dialect.tables_from_query(self._raw),
        )

    def _create_execute(self) -> tuple:
        return (
            self.dialect.interpolate(self._raw, self._bind),
            self._raw,
            copy(self._bind),
            self.dialect.tables_from_execute(self._raw),
        )

    def _create_insert(self) -> tuple:
        return (*self.dialect.render_insert(self.operation, self.table, self._row), [self.table])

    def _create_insert_ignore(self) -> tuple:
        return self._create_insert()

    def _create_replace(self) -> tuple:
        return self._create_insert()

    def _create_inserts(self) -> tuple:
        return (*self.dialect.render_inserts(self.table, self._rows), [self.table])

    def _create_update(self) -> tuple:
        where = self._required_where()
        return (*self.dialect.render_update(self.table, self._row, where), [self.table])

    def _create_crease(self) -> tuple:
        where = self._required_where()
        return (
            *self.dialect.render_crease(self.table, self._operator, self._diffs, where),
            [self.table],
        )

    def _create_delete(self) -> tuple:
        where = self._required_where()
        return (*self.dialect.render_delete(self.table, where), [self.table])

    def _create_delete_all(self) -> tuple:
        return (*self.dialect.render_delete(self.table, None), [self.table])
