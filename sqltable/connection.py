from __future__ import annotations
from .config import DatabaseConfig, get_config
from .errors import vert, BindError, ConsistencyError
from .instrumentation import get_logger
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generator, Iterator
import sqlite3


logger = get_logger('connection')


@dataclass
class Connection:
    """A driver connection plus the state the manager tracks for it."""
    raw: sqlite3.Connection
    info: str
    buffered: bool = field(default=True)
    last_id: int = field(default=0)


@dataclass
class TransactionState:
    """Process-wide transaction depth. Starts at 0 and is only changed
        by the connection manager.
    """
    depth: int = field(default=0)


class SqliteConnectionManager:
    """Opens and memoizes sqlite connections per connection string,
        executes prepared statements, and tracks nested transactions
        with savepoints. Connections run in autocommit mode outside
        explicit transactions.
    """
    _instance: SqliteConnectionManager|None = None
    config: DatabaseConfig
    state: TransactionState
    _connections: dict[str, Connection]

    def __init__(self, config: DatabaseConfig|None = None,
                 state: TransactionState|None = None) -> None:
        self.config = config or get_config()
        self.state = state or TransactionState()
        self._connections = {}

    @classmethod
    def instance(cls) -> SqliteConnectionManager:
        """The shared manager for the current process configuration."""
        if cls._instance is None or cls._instance.config is not get_config():
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = cls(get_config())
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Close and discard the shared manager."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    @property
    def depth(self) -> int:
        return self.state.depth

    def connect(self, alias: str, role: str = 'write') -> Connection:
        """Return the connection for the alias and role. Aliases and
            roles that resolve to the same connection string share one
            connection.
        """
        vert(role in ('read', 'write'), 'role must be read or write')
        info = self.config.connection_info(alias, role)
        if info not in self._connections:
            logger.debug('connecting %s (%s) to %s', alias, role, info)
            raw = sqlite3.connect(
                info,
                isolation_level=None,
                check_same_thread=False,
                uri=info.startswith('file:'),
            )
            self._connections[info] = Connection(raw=raw, info=info)
        return self._connections[info]

    @staticmethod
    def _run(connection: Connection, prepare: str, params: list|dict) -> sqlite3.Cursor:
        try:
            return connection.raw.execute(prepare, params)
        except (sqlite3.ProgrammingError, sqlite3.InterfaceError) as e:
            raise BindError(f'{e} in: {prepare}') from e

    @staticmethod
    def _rows(cursor: sqlite3.Cursor) -> Iterator[dict]:
        names = [d[0] for d in cursor.description or []]
        for row in cursor:
            yield dict(zip(names, row))

    def execute(self, connection: Connection, prepare: str, params: list|dict = ()) -> int:
        """Execute a statement and return the affected row count.
            Raises BindError if the driver rejects the parameters.
        """
        cursor = self._run(connection, prepare, params)
        affected = cursor.rowcount if cursor.rowcount > 0 else 0
        connection.last_id = (cursor.lastrowid or 0) if affected else 0
        return affected

    def fetch(self, connection: Connection, prepare: str, params: list|dict = ()) -> list[dict]:
        """Execute a query and return every row as a dict."""
        return list(self._rows(self._run(connection, prepare, params)))

    def iterate(self, connection: Connection, prepare: str,
                params: list|dict = ()) -> Generator[dict, None, None]:
        """Execute a query in unbuffered mode and yield rows as dicts.
            Buffered mode is restored when iteration finishes, fails,
            or the generator is closed.
        """
        with self.unbuffered(connection):
            yield from self._rows(self._run(connection, prepare, params))

    def last_inserted_id(self, connection: Connection) -> int:
        """The id generated by the last statement on the connection, or
            0 if it created no row.
        """
        return connection.last_id

    def begin(self, connection: Connection) -> int:
        """Start a transaction, or a savepoint when one is open."""
        if self.state.depth == 0:
            connection.raw.execute('begin')
        else:
            connection.raw.execute(f'savepoint sp_{self.state.depth}')
        self.state.depth += 1
        return self.state.depth

    def commit(self, connection: Connection) -> int:
        """Commit the innermost transaction. Raises ConsistencyError if
            none is open.
        """
        if self.state.depth <= 0:
            raise ConsistencyError('commit without an open transaction')
        self.state.depth -= 1
        if self.state.depth == 0:
            connection.raw.execute('commit')
        else:
            connection.raw.execute(f'release savepoint sp_{self.state.depth}')
        return self.state.depth

    def rollback(self, connection: Connection) -> int:
        """Roll back the innermost transaction. Raises ConsistencyError
            if none is open.
        """
        if self.state.depth <= 0:
            raise ConsistencyError('rollback without an open transaction')
        self.state.depth -= 1
        if self.state.depth == 0:
            connection.raw.execute('rollback')
        else:
            connection.raw.execute(f'rollback to savepoint sp_{self.state.depth}')
            connection.raw.execute(f'release savepoint sp_{self.state.depth}')
        return self.state.depth

    def set_buffered(self, connection: Connection, buffered: bool) -> None:
        connection.buffered = bool(buffered)

    @contextmanager
    def unbuffered(self, connection: Connection) -> Generator[Connection, None, None]:
        """Disable buffered mode for the block, restoring the previous
            mode on exit.
        """
        previous = connection.buffered
        self.set_buffered(connection, False)
        try:
            yield connection
        finally:
            self.set_buffered(connection, previous)

    def close(self) -> None:
        """Close every connection and forget the transaction depth."""
        for connection in self._connections.values():
            connection.raw.close()
        self._connections.clear()
        self.state.depth = 0
