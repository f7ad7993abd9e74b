"""
    The interfaces used by the package. `DialectProtocol` and
    `ConnectionManagerProtocol` must be implemented to bind the library
    to a new SQL driver. `CacheBackendProtocol` describes the result
    caches, and `CollectionProtocol` describes the document-store
    collections used by the document variants of map and join.
    `RelationProtocol` and `RecordProtocol` describe the active-record
    layer.
"""

from __future__ import annotations
from contextlib import AbstractContextManager
from typing import (
    Any,
    Iterator,
    Protocol,
    runtime_checkable,
)


@runtime_checkable
class DialectProtocol(Protocol):
    """Interface showing how a sql dialect renders statements."""
    join_kinds: dict[str, str]

    def escape(self, value: Any) -> str:
        """Escape a value for use inside a quoted literal."""
        ...

    def mark_field(self, field: str) -> str:
        """Quote an identifier."""
        ...

    def mark_value(self, value: Any) -> str:
        """Render a value as a literal."""
        ...

    def table_name(self, name: str) -> str:
        """Strip quoting from a table name."""
        ...

    def interpolate(self, sql: str, params: list|dict) -> str:
        """Inline bound parameters into raw sql."""
        ...

    def render_fields(self, fields: Any) -> str:
        """Render a column list."""
        ...

    def render_where(self, where: Any) -> tuple[str, str, list]:
        """Render a condition as (sql, prepared, params)."""
        ...

    def render_having(self, having: Any) -> tuple[str, str, list]:
        """Render a having condition as (sql, prepared, params)."""
        ...

    def render_joins(self, joins: list[tuple[str, str, Any]]) -> str:
        """Render (kind, table, on) triples."""
        ...

    def render_order_by(self, order: Any) -> str:
        ...

    def render_group_by(self, group: Any) -> str:
        ...

    def render_limit(self, limit: Any) -> str:
        ...

    def render_insert(self, kind: str, table: str, row: dict) -> tuple[str, str, list]:
        """Render an insert, insert-ignore, or replace."""
        ...

    def render_inserts(self, table: str, rows: list[dict]) -> tuple[str, str, list]:
        ...

    def render_update(self, table: str, row: dict,
                      where: tuple[str, str, list]) -> tuple[str, str, list]:
        ...

    def render_crease(self, table: str, operator: str, diffs: dict,
                      where: tuple[str, str, list]) -> tuple[str, str, list]:
        ...

    def render_delete(self, table: str,
                      where: tuple[str, str, list]|None) -> tuple[str, str, list]:
        ...

    def render_exist(self, select_sql: str) -> str:
        ...

    def tables_from_query(self, sql: str) -> list[str]:
        """Best-effort table names read by raw sql."""
        ...

    def tables_from_execute(self, sql: str) -> list[str]:
        """Best-effort table names written by raw sql."""
        ...

    def describe_sql(self, table: str) -> str:
        ...

    def parse_describe(self, rows: list[dict]) -> dict[str, dict]:
        ...

    def indexes_sql(self, table: str) -> str:
        ...

    def index_info_sql(self, index: str) -> str:
        ...

    def create_table_sql(self, table: str) -> tuple[str, list]:
        ...

    def parse_foreign_keys(self, create_statement: str) -> dict[str, dict]:
        ...

    def show_tables_sql(self) -> str:
        ...


@runtime_checkable
class ConnectionManagerProtocol(Protocol):
    """Interface showing how connections and transactions are managed.
        Only the manager mutates the transaction depth.
    """
    @property
    def depth(self) -> int:
        """The process-wide transaction depth."""
        ...

    def connect(self, alias: str, role: str) -> Any:
        """Return the connection for the table alias and role (read or
            write).
        """
        ...

    def execute(self, connection: Any, prepare: str, params: list|dict) -> int:
        """Execute a statement and return the affected row count."""
        ...

    def fetch(self, connection: Any, prepare: str, params: list|dict) -> list[dict]:
        """Execute a query and return all rows."""
        ...

    def iterate(self, connection: Any, prepare: str, params: list|dict) -> Iterator[dict]:
        """Execute a query and yield rows one at a time."""
        ...

    def last_inserted_id(self, connection: Any) -> int:
        """The id generated by the last insert, or 0 if none."""
        ...

    def begin(self, connection: Any) -> int:
        ...

    def commit(self, connection: Any) -> int:
        ...

    def rollback(self, connection: Any) -> int:
        ...

    def set_buffered(self, connection: Any, buffered: bool) -> None:
        ...

    def unbuffered(self, connection: Any) -> AbstractContextManager:
        """Context manager that disables buffered mode and restores it
            on exit.
        """
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class CacheBackendProtocol(Protocol):
    """Interface showing how a result cache should behave."""
    def get(self, key: str) -> Any:
        """Return the cached value or NOT_FOUND."""
        ...

    def set(self, namespace: str, key: str, value: Any) -> None:
        """Store a value and associate it with the namespace."""
        ...

    def clear(self, namespace: str) -> None:
        """Drop every value associated with the namespace."""
        ...

    def enabled(self) -> bool:
        ...


@runtime_checkable
class DocumentCursorProtocol(Protocol):
    """Interface showing how a document-store cursor should behave."""
    def sort(self, key_or_list: Any, direction: Any = None) -> DocumentCursorProtocol:
        ...

    def __iter__(self) -> Iterator[dict]:
        ...


@runtime_checkable
class CollectionProtocol(Protocol):
    """Interface showing how a document-store collection should behave.
        Matches the pymongo Collection signatures used here.
    """
    name: str

    def find(self, filter: dict = None, projection: dict = None) -> DocumentCursorProtocol:
        ...

    def find_one(self, filter: dict = None, projection: dict = None) -> dict|None:
        ...


@runtime_checkable
class RecordProtocol(Protocol):
    """Interface showing how an active record should behave."""
    data: dict

    def resolve(self, name: str) -> Any:
        """Resolve a declared relation by name, caching the value."""
        ...

    def save(self, visited: set|None = None) -> RecordProtocol:
        ...

    def remove(self, visited: set|None = None) -> None:
        ...

    def is_empty(self) -> bool:
        ...


@runtime_checkable
class RelationProtocol(Protocol):
    """Interface showing how a record-level relation should behave."""
    kind: str

    def resolve(self, record: RecordProtocol) -> Any:
        """Run the secondary query for the record."""
        ...

    def remove(self, record: RecordProtocol, visited: set) -> None:
        """Cascade a removal of the record through the relation."""
        ...
