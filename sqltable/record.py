from __future__ import annotations
from .errors import tert, RecordLoadError
from .interfaces import RelationProtocol
from .results import Result, Row
from .table import Table, table
from copy import deepcopy
from typing import Any, Type
import packify


class Record:
    """Active record over one row of `table_name`. Declared `fields`
        become properties; `old` holds the last loaded or saved values
        so that `save` only writes what changed. Relations declared with
        `has_one`, `has_many`, `belongs_to` and `belongs_to_many` are
        resolved on first access and kept in `resolved`.
    """
    table_name: str = ''
    primary_key: str = 'id'
    fields: tuple = ()
    relations: dict[str, RelationProtocol] = {}
    data: dict
    old: dict
    resolved: dict
    loaded: bool

    def __init__(self, data: dict|Row|None = None) -> None:
        """Initialize the instance. Raises TypeError for data that is
            not a dict or Row.
        """
        self.data = {}
        self.old = {}
        self.resolved = {}
        self.loaded = False

        if not hasattr(self.__class__, 'disable_field_property_mapping'):
            names = dir(self)
            for field in self.fields:
                if field not in names:
                    setattr(self.__class__, field, self.create_property(field))

        if data is not None:
            self.set(data)

    @staticmethod
    def create_property(name) -> property:
        """Create a dynamic property for the field with the given name."""
        @property
        def prop(self):
            return self.data.get(name)
        @prop.setter
        def prop(self, value):
            self.data[name] = value
        return prop

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_') or name in ('data', 'old', 'resolved', 'loaded'):
            raise AttributeError(name)
        if name in type(self).relations:
            return self.resolve(name)
        raise AttributeError(f'field does not exist: {name}')

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(table_name='{self.table_name}', " + \
            f"data={self.data})"

    def __hash__(self) -> int:
        """Allow inclusion in sets. Raises TypeError for unencodable
            values in self.data.
        """
        return hash(packify.pack(self.data))

    def __eq__(self, other) -> bool:
        if type(other) != type(self):
            return False
        return hash(self) == hash(other)

    @classmethod
    def add_relation(cls, name: str, relation: RelationProtocol) -> None:
        """Declare a relation under the given name."""
        tert(type(name) is str and len(name) > 0, 'name must be a non-empty str')
        tert(isinstance(relation, RelationProtocol), 'relation must implement RelationProtocol')
        if cls is not Record and cls.relations is Record.relations:
            cls.relations = {}
        elif 'relations' not in cls.__dict__:
            cls.relations = dict(cls.relations)
        cls.relations[name] = relation

    @classmethod
    def handle(cls, alias: str|None = None) -> Table:
        """The table handle for the record's table, or for another
            alias.
        """
        return table(alias or cls.table_name)

    @classmethod
    def from_data(cls, data: dict) -> Record:
        """A record loaded from a row's data."""
        record = cls()
        record._load_data(data)
        return record

    @classmethod
    def result_set(cls, rows: list[dict], relation: RelationProtocol|None = None,
                   owner_value: Any = None) -> ResultSet:
        return ResultSet(cls, rows, relation, owner_value)

    @classmethod
    def find(cls, key: Any) -> Record|None:
        """Load by primary key; None if there is no such row."""
        record = cls().load(key)
        return None if record.is_empty() else record

    def after_load(self, data: dict) -> dict:
        """Override to adjust data read from the table."""
        return data

    def before_save(self, data: dict) -> dict:
        """Override to adjust data before it is written."""
        return data

    def _load_data(self, data: dict) -> None:
        self.data = self.after_load(dict(data))
        self.old = deepcopy(self.data)
        self.resolved = {}
        self.loaded = len(self.data) > 0

    def set(self, data: dict|Row) -> Record:
        """Set current values without touching the loaded snapshot."""
        if isinstance(data, Row):
            data = data.all()
        tert(isinstance(data, dict), 'data must be dict or Row')
        self.data.update(data)
        return self

    def load(self, where: Any = None) -> Record:
        """Load the record by primary key, by condition, or, with no
            argument, by its primary key or current values. Raises
            RecordLoadError when none of these is available.
        """
        if where is None:
            if self.data.get(self.primary_key) is not None:
                condition = {self.primary_key: self.data[self.primary_key]}
            else:
                condition = {k: v for k, v in self.data.items() if v is not None}
        elif isinstance(where, (dict, list, tuple)):
            condition = where
        else:
            condition = {self.primary_key: where}

        if not condition:
            raise RecordLoadError(
                f'cannot load {self.__class__.__name__} without a key, condition, or data'
            )

        self._load_data(self.handle().row('*', condition).all())
        return self

    def is_empty(self) -> bool:
        return len(self.data) == 0

    def to_dict(self) -> dict:
        return dict(self.data)

    def _writable(self) -> dict:
        if not self.fields:
            return dict(self.data)
        return {k: v for k, v in self.data.items() if k in self.fields}

    def resolve(self, name: str) -> Any:
        """Resolve a declared relation, caching the value on the
            record. Raises AttributeError for an unknown name.
        """
        if name in self.resolved:
            return self.resolved[name]
        relation = type(self).relations.get(name)
        if relation is None:
            raise AttributeError(f'relation does not exist: {name}')
        self.resolved[name] = relation.resolve(self)
        return self.resolved[name]

    def save(self, visited: set|None = None) -> Record:
        """Insert the record if it has no primary key; otherwise update
            the fields that differ from the snapshot and save resolved
            relations.
        """
        visited = set() if visited is None else visited
        if id(self) in visited:
            return self
        visited.add(id(self))
        if self.is_empty():
            return self

        self.data = self.before_save(self.data)
        key = self.data.get(self.primary_key)

        if key is None:
            new_id = self.handle().insert(self._writable())
            if new_id:
                self.data[self.primary_key] = new_id
            self.old = deepcopy(self.data)
            self.loaded = True
            return self

        changes = {
            k: v for k, v in self._writable().items()
            if k != self.primary_key and (k not in self.old or self.old[k] != v)
        }
        if changes:
            self.handle().update(changes, {self.primary_key: key})
        self.old = deepcopy(self.data)

        for value in list(self.resolved.values()):
            value.save(visited)
        return self

    def remove(self, visited: set|None = None) -> None:
        """Delete the record after cascading through its relations:
            has-one and has-many children are removed, and
            belongs-to-many links are deleted from the middle table.
        """
        visited = set() if visited is None else visited
        if id(self) in visited:
            return
        visited.add(id(self))

        key = self.data.get(self.primary_key)
        if key is None:
            return

        for relation in type(self).relations.values():
            relation.remove(self, visited)

        self.handle().delete({self.primary_key: key})
        self.data = {}
        self.old = {}
        self.resolved = {}
        self.loaded = False


class ResultSet(Result):
    """A Result whose rows are records, tagged with the relation that
        produced it so it can be saved as a collection.
    """
    record_class: Type[Record]
    relation: RelationProtocol|None
    owner_value: Any
    old_primary_keys: list

    def __init__(self, record_class: Type[Record], data: list[dict]|None = None,
                 relation: RelationProtocol|None = None, owner_value: Any = None) -> None:
        tert(isinstance(record_class, type) and issubclass(record_class, Record),
            'record_class must be a Record class')
        self.record_class = record_class
        self.relation = relation
        self.owner_value = owner_value
        super().__init__(record_class.handle(), [] if data is None else data)
        pk = record_class.primary_key
        self.old_primary_keys = [d[pk] for d in self.data if d.get(pk) is not None]

    def _materialize(self) -> None:
        self.rows = [self.record_class.from_data(d) for d in self.data]

    @property
    def kind(self) -> str|None:
        return self.relation.kind if self.relation is not None else None

    def _sync_data(self) -> None:
        self.data = [dict(r.data) for r in self.rows]

    def to_records(self, cls: Type|None = None) -> list[Record]:
        return list(self.rows)

    def save(self, visited: set|None = None) -> ResultSet:
        """Save every member, then let the relation drop members whose
            primary keys left the set and link new ones.
        """
        visited = set() if visited is None else visited
        pk = self.record_class.primary_key
        keys = []
        for record in self.rows:
            if self.relation is not None:
                self.relation.attach(record, self.owner_value)
            record.save(visited)
            if record.data.get(pk) is not None:
                keys.append(record.data[pk])

        deleted = [k for k in self.old_primary_keys if k not in keys]
        added = [k for k in keys if k not in self.old_primary_keys]
        if self.relation is not None:
            self.relation.sync(self.owner_value, added, deleted)

        self.old_primary_keys = keys
        self._sync_data()
        return self

    def add(self, record: Record|Row|dict) -> ResultSet:
        """Add a member. Has-many members get the owner's key."""
        if not isinstance(record, self.record_class):
            tert(isinstance(record, (Row, dict)), 'record must be a Record, Row, or dict')
            record = self.record_class(record)
        if self.relation is not None:
            self.relation.attach(record, self.owner_value)
        self.rows.append(record)
        self._sync_data()
        return self

    def remove(self, target: Record|Row|Any|list) -> ResultSet:
        """Remove members by record, row, primary key, or a list of
            these. The change is persisted by `save`.
        """
        if isinstance(target, (list, tuple)):
            for item in target:
                self.remove(item)
            return self

        tert(not isinstance(target, dict), 'target must be a Record, Row, or key')
        pk = self.record_class.primary_key
        if isinstance(target, Record):
            key = target.data.get(pk)
        elif isinstance(target, Row):
            key = target.get(pk)
        else:
            key = target

        self.rows = [
            r for r in self.rows
            if r is not target and (key is None or r.data.get(pk) != key)
        ]
        self._sync_data()
        return self
