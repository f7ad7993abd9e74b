from __future__ import annotations
from .config import get_config
from .errors import tert, tressa
from .interfaces import CollectionProtocol
from .relations import (
    map_keys,
    resolve_join,
    resolve_join_documents,
    resolve_map,
    resolve_map_documents,
)
from typing import Any, Iterator, Type
import packify


def _collection(collection: str|CollectionProtocol) -> CollectionProtocol:
    """Resolve a collection name through the configured document store."""
    if isinstance(collection, str):
        store = get_config().document_store
        tressa(store is not None, 'no document_store configured')
        collection = store(collection)
    tert(isinstance(collection, CollectionProtocol),
        'collection must implement CollectionProtocol')
    return collection


class Row:
    """A single row and the table handle it came from. Fields are
        available by key or as attributes.
    """
    table: Any
    data: dict

    def __init__(self, table: Any, data: dict|None = None) -> None:
        tert(data is None or isinstance(data, dict), 'data must be dict')
        self.table = table
        self.data = {} if data is None else data

    def __repr__(self) -> str:
        alias = getattr(self.table, 'alias', None)
        return f"{self.__class__.__name__}(table={alias!r}, data={self.data})"

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_') or name in ('table', 'data'):
            raise AttributeError(name)
        try:
            return self.data[name]
        except KeyError:
            raise AttributeError(f'field does not exist: {name}') from None

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __hash__(self) -> int:
        return hash(packify.pack(self.data))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Row):
            return False
        return self.data == other.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def all(self) -> dict:
        """A copy of the row's fields."""
        return dict(self.data)

    def is_empty(self) -> bool:
        return len(self.data) == 0

    def _handle(self, table: Any) -> Any:
        if isinstance(table, str):
            return type(self.table).get_instance(table)
        return table

    def map(self, table: Any, relation: Any, fields: Any = None, where: Any = None) -> Row:
        """Merge the matching row of another table into this row."""
        resolve_map([self.data], self._handle(table), relation, fields, where)
        return self

    def join(self, table: Any, relation: Any, fields: Any = None, where: Any = None,
             order_by: Any = None) -> Row:
        """Attach the matching rows of another table as a Result under
            that table's alias.
        """
        handle = self._handle(table)
        local, groups = resolve_join([self.data], handle, relation, fields, where, order_by)
        if handle.alias not in self.data:
            self.data[handle.alias] = Result(handle, groups.get(self.data.get(local), []))
        return self

    def map_document(self, collection: str|CollectionProtocol, relation: Any,
                     fields: Any = None, where: dict|None = None) -> Row:
        """Merge the matching document of a collection into this row."""
        resolve_map_documents([self.data], _collection(collection), relation, fields, where)
        return self

    def join_document(self, collection: str|CollectionProtocol, relation: Any,
                      fields: Any = None, where: dict|None = None,
                      order_by: Any = None) -> Row:
        """Attach the matching documents of a collection as a list under
            the collection's name.
        """
        collection = _collection(collection)
        local, groups = resolve_join_documents(
            [self.data], collection, relation, fields, where, order_by
        )
        if collection.name not in self.data:
            self.data[collection.name] = groups.get(self.data.get(local), [])
        return self

    def to_record(self, cls: Type) -> Any:
        """Wrap the row in an active record of the given class."""
        return cls.from_data(self.all())


class Result:
    """The rows returned by a query. `data` holds the raw dicts and
        `rows` the Row views over them.
    """
    table: Any
    data: list[dict]
    rows: list

    def __init__(self, table: Any, data: list[dict]|None = None) -> None:
        tert(data is None or isinstance(data, list), 'data must be list[dict]')
        self.table = table
        self.data = [] if data is None else data
        self._materialize()

    def _materialize(self) -> None:
        self.rows = [Row(self.table, d) for d in self.data]

    def __repr__(self) -> str:
        alias = getattr(self.table, 'alias', None)
        return f"{self.__class__.__name__}(table={alias!r}, rows={len(self.rows)})"

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator:
        return iter(self.rows)

    def __getitem__(self, index: int) -> Any:
        return self.rows[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, Result):
            return False
        return self.data == other.data

    def count(self) -> int:
        return len(self.rows)

    def is_empty(self) -> bool:
        return len(self.rows) == 0

    def all(self) -> list[dict]:
        """Copies of the raw rows."""
        return [dict(d) for d in self.data]

    def first(self) -> Row:
        """The first row, or an empty Row."""
        return Row(self.table, self.data[0]) if self.data else Row(self.table)

    def column(self, field: str) -> list:
        return [d.get(field) for d in self.data]

    def get_map_keys(self, field: str) -> list:
        """Distinct non-null values of a field across all rows."""
        return map_keys(self.data, field)

    def _handle(self, table: Any) -> Any:
        if isinstance(table, str):
            return type(self.table).get_instance(table)
        return table

    def map(self, table: Any, relation: Any, fields: Any = None, where: Any = None) -> Result:
        """Merge one matching row of another table into every row using
            a single secondary query.
        """
        resolve_map(self.data, self._handle(table), relation, fields, where)
        self._materialize()
        return self

    def join(self, table: Any, relation: Any, fields: Any = None, where: Any = None,
             order_by: Any = None) -> Result:
        """Attach the matching rows of another table to every row as a
            Result under that table's alias.
        """
        handle = self._handle(table)
        local, groups = resolve_join(self.data, handle, relation, fields, where, order_by)
        for row in self.data:
            if handle.alias not in row:
                row[handle.alias] = Result(handle, groups.get(row.get(local), []))
        self._materialize()
        return self

    def map_document(self, collection: str|CollectionProtocol, relation: Any,
                     fields: Any = None, where: dict|None = None) -> Result:
        resolve_map_documents(self.data, _collection(collection), relation, fields, where)
        self._materialize()
        return self

    def join_document(self, collection: str|CollectionProtocol, relation: Any,
                      fields: Any = None, where: dict|None = None,
                      order_by: Any = None) -> Result:
        collection = _collection(collection)
        local, groups = resolve_join_documents(
            self.data, collection, relation, fields, where, order_by
        )
        for row in self.data:
            if collection.name not in row:
                row[collection.name] = groups.get(row.get(local), [])
        self._materialize()
        return self

    def to_records(self, cls: Type) -> list:
        """Wrap every row in an active record of the given class."""
        return [cls.from_data(dict(d)) for d in self.data]
