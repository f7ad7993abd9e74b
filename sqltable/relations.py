"""
    Relation resolution. A relation names the local field and the
    remote field that link two tables (or a table and a document
    collection). `map` merges one remote row into each local row and
    `join` attaches every matching remote row. Both issue exactly one
    secondary query for the distinct local keys of the whole result.
    The record-level relations below build on the same queries to give
    active records their has-one, has-many, belongs-to and
    belongs-to-many properties.
"""

from __future__ import annotations
from .errors import tert, vert, RelationFormatError
from .interfaces import CollectionProtocol, RecordProtocol
from .shapes import FromList, FromRaw, fields_shape, order_shape, where_shape
from .tools import _pascalcase_to_snake_case
from typing import Any, Type


def parse_relation(relation: str|dict|list|tuple, store: str = 'sql') -> tuple[str, str]:
    """Normalize a relation to (local field, remote field). Accepts
        'local', 'local=remote', {'local': 'remote'}, or
        ('local', 'remote'). A bare field links to 'id' in sql tables
        and to '_id' in document collections. Raises
        RelationFormatError for anything else.
    """
    default_remote = '_id' if store == 'document' else 'id'
    pair = None

    if isinstance(relation, str):
        parts = [p.strip() for p in relation.split('=')]
        if len(parts) == 1:
            pair = (parts[0], default_remote)
        elif len(parts) == 2:
            pair = (parts[0], parts[1])
    elif isinstance(relation, dict) and len(relation) == 1:
        pair = next(iter(relation.items()))
    elif isinstance(relation, (list, tuple)) and len(relation) == 2:
        pair = tuple(relation)

    if pair is None or not all([type(p) is str and len(p.strip()) for p in pair]):
        raise RelationFormatError(f'invalid relation: {relation!r}')
    return (pair[0].strip(), pair[1].strip())

def map_keys(data: list[dict], field: str) -> list:
    """Distinct non-null values of the field, in order of appearance."""
    keys = []
    for row in data:
        value = row.get(field)
        if value is not None and value not in keys:
            keys.append(value)
    return keys

def field_names(rendered: str) -> list[str]:
    """The output column names of a rendered field list. Wildcards are
        skipped.
    """
    names = []
    for part in rendered.split(','):
        part = part.strip()
        lowered = part.lower()
        if ' as ' in lowered:
            part = part[lowered.rindex(' as ') + 4:]
        part = part.strip().strip('`"[]')
        if '.' in part:
            part = part.split('.')[-1].strip('`"[]')
        if part and part != '*':
            names.append(part)
    return names

def append_field(dialect: Any, fields: Any, field: str) -> FromList|FromRaw:
    """Add the field to a field list unless it is already selected."""
    rendered = dialect.render_fields(fields_shape(fields))
    if rendered.strip() == '*':
        return FromRaw('*')
    parts = [p.strip() for p in rendered.split(',')]
    if field not in field_names(rendered):
        parts.append(dialect.mark_field(field))
    return FromList(tuple(parts))

def append_null(row: dict, names: list[str]) -> dict:
    """Give the row an empty value for every missing name."""
    for name in names:
        if name not in row:
            row[name] = ''
    return row

def _merge(data: list[dict], local: str, remote: str, by_key: dict,
           names: list[str], drop: set) -> None:
    for row in data:
        match = by_key.get(row.get(local))
        if match is None:
            append_null(row, names)
            continue
        for key, value in match.items():
            if key not in row and key not in drop:
                row[key] = value

def _conditions(link: str, keys: list, where: Any) -> FromList:
    conditions = [{f'{link} in': keys}]
    extra = where_shape(where)
    if extra is not None:
        conditions.append(extra)
    return FromList(tuple(conditions))

def resolve_map(data: list[dict], table: Any, relation: Any, fields: Any = None,
                where: Any = None) -> list[dict]:
    """Merge one matching row of the table into each row of data. Rows
        without a match get empty values for the requested fields.
        Existing fields are never overwritten.
    """
    local, remote = parse_relation(relation)
    rendered = table.dialect.render_fields(fields_shape(fields))
    names = field_names(rendered)
    drop = set() if rendered.strip() == '*' or remote in names else {remote}
    keys = map_keys(data, local)

    by_key = {}
    if keys:
        rows = table.select_array(
            append_field(table.dialect, fields, remote), _conditions(remote, keys, where)
        )
        for row in rows:
            by_key.setdefault(row.get(remote), row)

    _merge(data, local, remote, by_key, names, drop)
    return data

def resolve_join(data: list[dict], table: Any, relation: Any, fields: Any = None,
                 where: Any = None, order_by: Any = None) -> tuple[str, dict[Any, list[dict]]]:
    """Query every row of the table matching the local keys of data.
        Returns the local field and the matching rows grouped by key.
    """
    local, remote = parse_relation(relation)
    keys = map_keys(data, local)
    groups = {}
    if keys:
        rows = table.select_array(
            append_field(table.dialect, fields, remote),
            _conditions(remote, keys, where),
            order_shape(order_by),
        )
        for row in rows:
            groups.setdefault(row.get(remote), []).append(row)
    return (local, groups)

def _requested(fields: Any) -> list[str]|None:
    if fields is None or fields == '*':
        return None
    if isinstance(fields, str):
        fields = [f.strip() for f in fields.split(',') if f.strip()]
    tert(isinstance(fields, (list, tuple)), 'document fields must be str or list')
    return list(fields)

def _projection(fields: Any, remote: str) -> dict|None:
    requested = _requested(fields)
    if requested is None:
        return None
    projection = {f: 1 for f in requested}
    projection[remote] = 1
    if '_id' not in projection:
        projection['_id'] = 0
    return projection

def _find(collection: CollectionProtocol, remote: str, keys: list, fields: Any,
          where: dict|None, order_by: Any = None) -> list[dict]:
    tert(isinstance(collection, CollectionProtocol),
        'collection must implement CollectionProtocol')
    tert(where is None or isinstance(where, dict), 'document where must be dict')
    query = {remote: {'$in': keys}}
    if where:
        query = {'$and': [query, where]}
    cursor = collection.find(query, _projection(fields, remote))
    if order_by:
        if isinstance(order_by, dict):
            order_by = list(order_by.items())
        cursor = cursor.sort(order_by)
    return [dict(doc) for doc in cursor]

def resolve_map_documents(data: list[dict], collection: CollectionProtocol,
                          relation: Any, fields: Any = None,
                          where: dict|None = None) -> list[dict]:
    """Document-store version of resolve_map."""
    local, remote = parse_relation(relation, 'document')
    requested = _requested(fields)
    names = requested or []
    drop = set() if requested is None or remote in requested else {remote}
    keys = map_keys(data, local)
    by_key = {}
    if keys:
        for doc in _find(collection, remote, keys, fields, where):
            by_key.setdefault(doc.get(remote), doc)
    _merge(data, local, remote, by_key, names, drop)
    return data

def resolve_join_documents(data: list[dict], collection: CollectionProtocol,
                           relation: Any, fields: Any = None, where: dict|None = None,
                           order_by: Any = None) -> tuple[str, dict[Any, list[dict]]]:
    """Document-store version of resolve_join."""
    local, remote = parse_relation(relation, 'document')
    keys = map_keys(data, local)
    groups = {}
    if keys:
        for doc in _find(collection, remote, keys, fields, where, order_by):
            groups.setdefault(doc.get(remote), []).append(doc)
    return (local, groups)


class Relation:
    """Base class for record-level relations. `target` is the Record
        class on the other side.
    """
    kind: str = ''
    target: Type[RecordProtocol]
    foreign_key: str
    primary_key: str
    order_by: Any

    def __init__(self, target: Type[RecordProtocol], foreign_key: str,
                 primary_key: str = 'id', order_by: Any = None) -> None:
        tert(isinstance(target, type), 'target must be a Record class')
        tert(type(foreign_key) is str and len(foreign_key) > 0,
            'foreign_key must be a non-empty str')
        tert(type(primary_key) is str and len(primary_key) > 0,
            'primary_key must be a non-empty str')
        self.target = target
        self.foreign_key = foreign_key
        self.primary_key = primary_key
        self.order_by = order_by

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(target={self.target.__name__}, " + \
            f"foreign_key='{self.foreign_key}', primary_key='{self.primary_key}')"

    def resolve(self, record: RecordProtocol) -> Any:
        raise NotImplementedError()

    def remove(self, record: RecordProtocol, visited: set) -> None:
        """Cascade a removal. No-op unless the relation owns its
            targets.
        """
        ...

    def attach(self, member: RecordProtocol, owner_value: Any) -> None:
        """Prepare a record being added to a collection of this
            relation.
        """
        ...

    def sync(self, owner_value: Any, added: list, deleted: list) -> None:
        """Persist membership changes of a saved collection."""
        ...


class HasOne(Relation):
    """The target row holds a foreign key to the record's primary key."""
    kind: str = 'has_one'

    def resolve(self, record: RecordProtocol) -> RecordProtocol:
        value = record.data.get(self.primary_key)
        if value is None:
            return self.target()
        row = self.target.handle().row('*', {self.foreign_key: value}, self.order_by)
        return self.target.from_data(row.all())

    def remove(self, record: RecordProtocol, visited: set) -> None:
        child = self.resolve(record)
        if not child.is_empty():
            child.remove(visited)


class HasMany(Relation):
    """Every target row with a foreign key to the record's primary key."""
    kind: str = 'has_many'

    def resolve(self, record: RecordProtocol) -> Any:
        value = record.data.get(self.primary_key)
        rows = []
        if value is not None:
            rows = self.target.handle().select_array(
                '*', {self.foreign_key: value}, self.order_by
            )
        return self.target.result_set(rows, self, value)

    def remove(self, record: RecordProtocol, visited: set) -> None:
        for member in self.resolve(record):
            member.remove(visited)

    def attach(self, member: RecordProtocol, owner_value: Any) -> None:
        if owner_value is not None:
            member.data[self.foreign_key] = owner_value

    def sync(self, owner_value: Any, added: list, deleted: list) -> None:
        if deleted:
            self.target.handle().delete({self.target.primary_key: deleted})


class BelongsTo(Relation):
    """The record holds a foreign key to the target's primary key."""
    kind: str = 'belongs_to'

    def resolve(self, record: RecordProtocol) -> RecordProtocol:
        value = record.data.get(self.foreign_key)
        if value is None:
            return self.target()
        row = self.target.handle().row('*', {self.primary_key: value})
        return self.target.from_data(row.all())


class BelongsToMany(Relation):
    """Targets linked through a middle (junction) table that holds a
        foreign key to each side.
    """
    kind: str = 'belongs_to_many'
    middle: str
    target_foreign_key: str
    target_primary_key: str

    def __init__(self, target: Type[RecordProtocol], middle: str, foreign_key: str,
                 target_foreign_key: str, primary_key: str = 'id',
                 target_primary_key: str = 'id', order_by: Any = None) -> None:
        super().__init__(target, foreign_key, primary_key, order_by)
        tert(type(middle) is str and len(middle) > 0, 'middle must be a non-empty str')
        tert(type(target_foreign_key) is str and len(target_foreign_key) > 0,
            'target_foreign_key must be a non-empty str')
        self.middle = middle
        self.target_foreign_key = target_foreign_key
        self.target_primary_key = target_primary_key

    def resolve(self, record: RecordProtocol) -> Any:
        value = record.data.get(self.primary_key)
        rows = []
        if value is not None:
            keys = self.target.handle(self.middle).col(
                self.target_foreign_key, {self.foreign_key: value}
            )
            if keys:
                rows = self.target.handle().select_array(
                    '*', {self.target_primary_key: keys}, self.order_by
                )
        return self.target.result_set(rows, self, value)

    def remove(self, record: RecordProtocol, visited: set) -> None:
        value = record.data.get(self.primary_key)
        if value is not None:
            self.target.handle(self.middle).delete({self.foreign_key: value})

    def sync(self, owner_value: Any, added: list, deleted: list) -> None:
        middle = self.target.handle(self.middle)
        if deleted:
            middle.delete({
                self.foreign_key: owner_value,
                f'{self.target_foreign_key} in': deleted,
            })
        if added:
            middle.inserts([
                {self.foreign_key: owner_value, self.target_foreign_key: key}
                for key in added
            ])


def _get_id_column(cls: Type[RecordProtocol]) -> str:
    return _pascalcase_to_snake_case(cls.__name__) + '_id'

def has_one(cls: Type[RecordProtocol], name: str, target: Type[RecordProtocol],
            foreign_key: str = None, order_by: Any = None) -> HasOne:
    """Declare a has-one relation on cls under the given name. The
        foreign key defaults to the snake_case name of cls plus '_id'.
    """
    relation = HasOne(
        target, foreign_key or _get_id_column(cls), cls.primary_key, order_by
    )
    cls.add_relation(name, relation)
    return relation

def has_many(cls: Type[RecordProtocol], name: str, target: Type[RecordProtocol],
             foreign_key: str = None, order_by: Any = None) -> HasMany:
    """Declare a has-many relation on cls under the given name."""
    relation = HasMany(
        target, foreign_key or _get_id_column(cls), cls.primary_key, order_by
    )
    cls.add_relation(name, relation)
    return relation

def belongs_to(cls: Type[RecordProtocol], name: str, target: Type[RecordProtocol],
               foreign_key: str = None) -> BelongsTo:
    """Declare a belongs-to relation on cls under the given name. The
        foreign key defaults to the snake_case name of target plus
        '_id'.
    """
    relation = BelongsTo(target, foreign_key or _get_id_column(target), target.primary_key)
    cls.add_relation(name, relation)
    return relation

def belongs_to_many(cls: Type[RecordProtocol], name: str, target: Type[RecordProtocol],
                    middle: str, foreign_key: str = None,
                    target_foreign_key: str = None,
                    order_by: Any = None) -> BelongsToMany:
    """Declare a belongs-to-many relation on cls under the given name,
        linked through the middle table alias.
    """
    vert(type(middle) is str and len(middle) > 0, 'middle must be a table alias')
    relation = BelongsToMany(
        target, middle,
        foreign_key or _get_id_column(cls),
        target_foreign_key or _get_id_column(target),
        cls.primary_key, target.primary_key, order_by,
    )
    cls.add_relation(name, relation)
    return relation
