from __future__ import annotations
from .errors import tert, vert
from .shapes import FromList, FromMap, FromRaw, Shape
from decimal import Decimal
from typing import Any
import re


_condition_pattern = re.compile(
    r'^\s*([\w."]+)\s*(not\s+like|not\s+in|is\s+not|like|in|is|<=|>=|!=|<>|<|>|=)?\s*$',
    re.IGNORECASE
)
_table_pattern = re.compile(
    r'\b(?:from|join|into|update|table)\s+(?:if\s+(?:not\s+)?exists\s+)?'
    r'([`"\[]?[\w.]+[`"\]]?)',
    re.IGNORECASE
)
_not_table_names = {'set', 'select', 'where', 'values', 'default', 'only'}
_order_pattern = re.compile(r'^\s*([\w."]+)(?:\s+(asc|desc))?\s*$', re.IGNORECASE)
_type_pattern = re.compile(r'^\s*(\w+)(?:\s*\(\s*(\d+)(?:\s*,\s*(\d+))?\s*\))?')
_foreign_key_pattern = re.compile(
    r'foreign\s+key\s*\(\s*["`\[]?(\w+)["`\]]?\s*\)\s*references\s+'
    r'["`\[]?(\w+)["`\]]?\s*\(\s*["`\[]?(\w+)["`\]]?\s*\)',
    re.IGNORECASE
)
_inline_reference_pattern = re.compile(
    r'(?:,|\()\s*["`\[]?(\w+)["`\]]?\s+[\w() ]*?\breferences\s+'
    r'["`\[]?(\w+)["`\]]?\s*\(\s*["`\[]?(\w+)["`\]]?\s*\)',
    re.IGNORECASE
)


class SqliteDialect:
    """Renders statement clauses for sqlite. Values are rendered twice:
        as literals for the human-readable statement and as `?`
        placeholders plus a parameter list for execution.
    """
    join_kinds: dict[str, str] = {
        'join': 'join',
        'inner': 'inner join',
        'left': 'left join',
        'right': 'right join',
        'outer': 'full outer join',
    }
    insert_verbs: dict[str, str] = {
        'insert': 'insert into',
        'insert_ignore': 'insert or ignore into',
        'replace': 'replace into',
    }

    def escape(self, value: Any) -> str:
        """Escape a value for use inside a single-quoted literal."""
        return str(value).replace("'", "''")

    def mark_field(self, field: str) -> str:
        """Quote a plain or table-qualified column name. Expressions
            and already-quoted names are returned unchanged.
        """
        field = str(field).strip()
        if re.fullmatch(r'\w+', field):
            return f'"{field}"'
        if re.fullmatch(r'\w+\.\w+', field):
            table, column = field.split('.')
            return f'"{table}"."{column}"'
        if re.fullmatch(r'\w+\.\*', field):
            return f'"{field[:-2]}".*'
        return field

    def mark_value(self, value: Any) -> str:
        """Render a value as a sql literal."""
        if value is None:
            return 'null'
        if type(value) is bool:
            return '1' if value else '0'
        if type(value) in (int, float, Decimal):
            return str(value)
        if type(value) in (bytes, bytearray):
            return f"X'{bytes(value).hex()}'"
        return f"'{self.escape(value)}'"

    def table_name(self, name: str) -> str:
        """Strip quoting and schema qualification from a table name."""
        return str(name).strip().strip('`"[]').split('.')[-1].strip('`"[]')

    def interpolate(self, sql: str, params: list|tuple|dict) -> str:
        """Inline bound parameters into raw sql for logging and cache
            keys. Positional params fill `?` marks in order; a dict
            fills `:name` marks.
        """
        if isinstance(params, dict):
            return re.sub(
                r'(?<!:):(\w+)',
                lambda m: self.mark_value(params[m.group(1)])
                    if m.group(1) in params else m.group(0),
                sql
            )
        values = iter(params)
        def fill(match: re.Match) -> str:
            try:
                return self.mark_value(next(values))
            except StopIteration:
                return match.group(0)
        return re.sub(r'\?', fill, sql)

    def render_fields(self, fields: Shape|None) -> str:
        """Render the column list of a select."""
        if fields is None:
            return '*'
        if isinstance(fields, FromRaw):
            return fields.text
        if isinstance(fields, FromList):
            return ','.join([self.mark_field(f) for f in fields.items])
        return ','.join([
            f'{self.mark_field(expr)} as {self.mark_field(alias)}'
            for expr, alias in fields.items
        ])

    def _condition(self, key: str, value: Any) -> tuple[str, str, list]:
        tert(type(key) is str, 'condition keys must be str')
        match = _condition_pattern.match(key)
        vert(match is not None, f'unrecognized condition: {key}')
        column = self.mark_field(match.group(1))
        operator = ' '.join((match.group(2) or '').lower().split())

        if not operator:
            if isinstance(value, (list, tuple, set)):
                operator = 'in'
            elif value is None:
                operator = 'is'
            else:
                operator = '='

        if operator in ('in', 'not in'):
            values = list(value) if isinstance(value, (list, tuple, set)) else [value]
            if not values:
                text = '0 = 1' if operator == 'in' else '1 = 1'
                return (text, text, [])
            literals = ','.join([self.mark_value(v) for v in values])
            marks = ','.join(['?'] * len(values))
            return (
                f'{column} {operator} ({literals})',
                f'{column} {operator} ({marks})',
                values,
            )

        if operator in ('is', 'is not') and value is None:
            text = f'{column} {operator} null'
            return (text, text, [])

        return (
            f'{column} {operator} {self.mark_value(value)}',
            f'{column} {operator} ?',
            [value],
        )

    def _fragments(self, where: Shape|str|dict|list) -> list[tuple[str, str, list, bool]]:
        if isinstance(where, str):
            where = FromRaw(where)
        elif isinstance(where, dict):
            where = FromMap(tuple(where.items()))
        elif isinstance(where, (list, tuple)):
            where = FromList(tuple(where))

        if isinstance(where, FromRaw):
            return [(where.text, where.text, [], True)]
        if isinstance(where, FromMap):
            return [(*self._condition(k, v), False) for k, v in where.items]

        tert(isinstance(where, FromList), 'where must be str, list, or dict')
        fragments = []
        for item in where.items:
            tert(isinstance(item, (str, dict, FromRaw, FromMap, FromList)),
                'where list items must be str, dict, or list')
            fragments.extend(self._fragments(item))
        return fragments

    def render_where(self, where: Shape|None) -> tuple[str, str, list]:
        """Render a condition as (sql, prepared, params). Returns empty
            strings for a missing condition.
        """
        if where is None:
            return ('', '', [])
        fragments = self._fragments(where)
        wrap = len(fragments) > 1
        sql, prepared, params = [], [], []
        for literal, marked, values, raw in fragments:
            if raw and wrap:
                literal, marked = f'({literal})', f'({marked})'
            sql.append(literal)
            prepared.append(marked)
            params.extend(values)
        return (' and '.join(sql), ' and '.join(prepared), params)

    def render_having(self, having: Shape|None) -> tuple[str, str, list]:
        """Render a having condition as (sql, prepared, params)."""
        return self.render_where(having)

    def _on(self, on: Shape) -> str:
        if isinstance(on, FromRaw):
            return on.text
        if isinstance(on, FromMap):
            return ' and '.join([
                f'{self.mark_field(a)} = {self.mark_field(b)}' for a, b in on.items
            ])
        vert(len(on.items) == 2, 'on list must be (left, right)')
        return f'{self.mark_field(on.items[0])} = {self.mark_field(on.items[1])}'

    def render_joins(self, joins: list[tuple[str, str, Shape]]) -> str:
        """Render (kind, table, on) triples."""
        return ''.join([
            f' {self.join_kinds[kind]} {self.mark_field(table)} on {self._on(on)}'
            for kind, table, on in joins
        ])

    def _order_item(self, item: str) -> str:
        match = _order_pattern.match(str(item))
        if not match:
            return str(item)
        if match.group(2):
            return f'{self.mark_field(match.group(1))} {match.group(2).lower()}'
        return self.mark_field(match.group(1))

    def render_order_by(self, order: Shape|None) -> str:
        if order is None:
            return ''
        if isinstance(order, FromRaw):
            return f' order by {order.text}'
        if isinstance(order, FromList):
            return ' order by ' + ','.join([self._order_item(i) for i in order.items])
        parts = []
        for column, direction in order.items:
            vert(str(direction).lower() in ('asc', 'desc'),
                'order direction must be asc or desc')
            parts.append(f'{self.mark_field(column)} {str(direction).lower()}')
        return ' order by ' + ','.join(parts)

    def render_group_by(self, group: Shape|None) -> str:
        if group is None:
            return ''
        if isinstance(group, FromRaw):
            return f' group by {group.text}'
        items = group.items if isinstance(group, FromList) else group.keys()
        return ' group by ' + ','.join([self.mark_field(i) for i in items])

    def render_limit(self, limit: Shape|None) -> str:
        if limit is None:
            return ''
        if isinstance(limit, FromRaw):
            return f' limit {limit.text}'
        tert(isinstance(limit, FromList), 'limit must be int or (offset, count)')
        return ' limit ' + ','.join([str(int(i)) for i in limit.items])

    def render_insert(self, kind: str, table: str, row: dict) -> tuple[str, str, list]:
        """Render an insert, insert-ignore or replace of one row."""
        vert(kind in self.insert_verbs, f'unknown insert kind: {kind}')
        tert(isinstance(row, dict) and len(row) > 0, 'row must be a non-empty dict')
        fields = ','.join([self.mark_field(k) for k in row])
        literals = ','.join([self.mark_value(v) for v in row.values()])
        marks = ','.join(['?'] * len(row))
        head = f'{self.insert_verbs[kind]} {self.mark_field(table)} ({fields}) values'
        return (f'{head} ({literals})', f'{head} ({marks})', list(row.values()))

    def render_inserts(self, table: str, rows: list[dict]) -> tuple[str, str, list]:
        """Render a multi-row insert. The first row's keys are the
            column list; columns missing from later rows are null.
        """
        tert(isinstance(rows, (list, tuple)) and len(rows) > 0,
            'rows must be a non-empty list of dict')
        tert(all([isinstance(r, dict) and len(r) for r in rows]),
            'rows must be a non-empty list of dict')
        keys = list(rows[0].keys())
        fields = ','.join([self.mark_field(k) for k in keys])
        literals, marks, params = [], [], []
        for row in rows:
            values = [row.get(k) for k in keys]
            literals.append('(' + ','.join([self.mark_value(v) for v in values]) + ')')
            marks.append('(' + ','.join(['?'] * len(keys)) + ')')
            params.extend(values)
        head = f'insert into {self.mark_field(table)} ({fields}) values '
        return (head + ','.join(literals), head + ','.join(marks), params)

    def render_set(self, row: dict) -> tuple[str, str, list]:
        tert(isinstance(row, dict) and len(row) > 0, 'row must be a non-empty dict')
        sql = ', '.join([f'{self.mark_field(k)} = {self.mark_value(v)}' for k, v in row.items()])
        prepared = ', '.join([f'{self.mark_field(k)} = ?' for k in row])
        return (sql, prepared, list(row.values()))

    def render_update(self, table: str, row: dict,
                      where: tuple[str, str, list]) -> tuple[str, str, list]:
        sql, prepared, params = self.render_set(row)
        head = f'update {self.mark_field(table)} set '
        return (
            f'{head}{sql} where {where[0]}',
            f'{head}{prepared} where {where[1]}',
            [*params, *where[2]],
        )

    def render_crease(self, table: str, operator: str, diffs: dict,
                      where: tuple[str, str, list]) -> tuple[str, str, list]:
        """Render `field = field +/- diff` for each field."""
        vert(operator in ('+', '-'), 'crease operator must be + or -')
        tert(isinstance(diffs, dict) and len(diffs) > 0, 'crease fields must not be empty')
        sql = ', '.join([
            f'{self.mark_field(f)} = {self.mark_field(f)} {operator} {self.mark_value(d)}'
            for f, d in diffs.items()
        ])
        prepared = ', '.join([
            f'{self.mark_field(f)} = {self.mark_field(f)} {operator} ?' for f in diffs
        ])
        head = f'update {self.mark_field(table)} set '
        return (
            f'{head}{sql} where {where[0]}',
            f'{head}{prepared} where {where[1]}',
            [*diffs.values(), *where[2]],
        )

    def render_delete(self, table: str, where: tuple[str, str, list]|None) -> tuple[str, str, list]:
        """Render a delete. A missing where deletes every row."""
        head = f'delete from {self.mark_field(table)}'
        if where is None:
            return (head, head, [])
        return (f'{head} where {where[0]}', f'{head} where {where[1]}', list(where[2]))

    def render_exist(self, select_sql: str) -> str:
        return f'select exists({select_sql}) as "cnt"'

    def tables_from_query(self, sql: str) -> list[str]:
        """Best-effort extraction of the tables a raw query reads.
            Returns an empty list when nothing can be recognized.
        """
        names = []
        for match in _table_pattern.finditer(sql):
            name = self.table_name(match.group(1))
            if name and name.lower() not in _not_table_names and name not in names:
                names.append(name)
        return names

    def tables_from_execute(self, sql: str) -> list[str]:
        """Best-effort extraction of the tables a raw statement writes."""
        return self.tables_from_query(sql)

    def describe_sql(self, table: str) -> str:
        return f'pragma table_info({self.mark_field(table)})'

    def parse_describe(self, rows: list[dict]) -> dict[str, dict]:
        """Convert `pragma table_info` rows into column metadata keyed
            by column name.
        """
        columns = {}
        for row in rows:
            match = _type_pattern.match(row.get('type') or '')
            column_type = match.group(1).lower() if match else ''
            columns[row['name']] = {
                'name': row['name'],
                'type': column_type,
                'max_length': int(match.group(2)) if match and match.group(2) else None,
                'scale': int(match.group(3)) if match and match.group(3) else None,
                'not_null': bool(row.get('notnull')),
                'primary_key': bool(row.get('pk')),
                'auto_increment': bool(row.get('pk')) and column_type == 'integer',
                'has_default': row.get('dflt_value') is not None,
                'default_value': row.get('dflt_value'),
            }
        return columns

    def indexes_sql(self, table: str) -> str:
        return f'pragma index_list({self.mark_field(table)})'

    def index_info_sql(self, index: str) -> str:
        return f'pragma index_info({self.mark_field(index)})'

    def create_table_sql(self, table: str) -> tuple[str, list]:
        return ("select sql from sqlite_master where type = 'table' and name = ?", [table])

    def parse_foreign_keys(self, create_statement: str) -> dict[str, dict]:
        """Find foreign keys declared in a create table statement,
            keyed by local column.
        """
        keys = {}
        for pattern in (_foreign_key_pattern, _inline_reference_pattern):
            for column, table, remote in pattern.findall(create_statement or ''):
                if column.lower() in ('foreign', 'constraint', 'key', 'create') or column in keys:
                    continue
                keys[column] = {'table': table, 'column': remote}
        return keys

    def show_tables_sql(self) -> str:
        return "select name from sqlite_master where type = 'table' " + \
            "and name not like 'sqlite_%' order by name"
