"""
    Result caches. Entries are keyed by the literal sql of a read and
    associated with every table the read touched; any write to one of
    those tables clears the table's namespace. `MemoryCache` is shared
    by the whole process; `FileCache` persists entries to a directory
    using packify and serves tables opened in file-cache mode.
"""

from __future__ import annotations
from .errors import tert
from .instrumentation import get_logger
from contextlib import contextmanager
from contextvars import ContextVar
from copy import deepcopy
from hashlib import sha256
from typing import Any, Generator
import os
import packify
import re


logger = get_logger('cache')


class _NotFound:
    def __repr__(self) -> str:
        return 'NOT_FOUND'

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()

_bypass: ContextVar[bool] = ContextVar('sqltable_cache_bypass', default=False)


@contextmanager
def no_cache() -> Generator[None, None, None]:
    """Bypass the result cache for reads made inside the block, e.g.
        for the duration of one request.
    """
    token = _bypass.set(True)
    try:
        yield
    finally:
        _bypass.reset(token)

def cache_bypassed() -> bool:
    """True inside a `no_cache` block."""
    return _bypass.get()


class MemoryCache:
    """Process-wide in-memory cache."""
    _instance: MemoryCache|None = None
    _entries: dict[str, Any]
    _namespaces: dict[str, set[str]]
    _enabled: bool

    def __init__(self, enabled: bool = True) -> None:
        self._entries = {}
        self._namespaces = {}
        self._enabled = enabled

    @classmethod
    def instance(cls) -> MemoryCache:
        """The shared process cache."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Discard the shared process cache."""
        cls._instance = None

    def enabled(self) -> bool:
        return self._enabled

    def get(self, key: str) -> Any:
        """Return a copy of the cached value or NOT_FOUND."""
        if key not in self._entries:
            return NOT_FOUND
        return deepcopy(self._entries[key])

    def set(self, namespace: str, key: str, value: Any) -> None:
        self._entries[key] = deepcopy(value)
        self._namespaces.setdefault(namespace, set()).add(key)

    def clear(self, namespace: str) -> None:
        for key in self._namespaces.pop(namespace, set()):
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class FileCache:
    """Cache persisted under a directory. Each entry is a packify blob
        named by the hash of its key; each namespace is a subdirectory
        of marker files naming the entries it owns.
    """
    _instances: dict[str, FileCache] = {}
    path: str

    def __init__(self, path: str) -> None:
        tert(type(path) is str and len(path) > 0, 'path must be a non-empty str')
        self.path = path

    @classmethod
    def for_path(cls, path: str) -> FileCache:
        """The shared file cache for a directory."""
        if path not in cls._instances:
            cls._instances[path] = cls(path)
        return cls._instances[path]

    @staticmethod
    def _hash(key: str) -> str:
        return sha256(key.encode('utf-8')).hexdigest()

    def _namespace_dir(self, namespace: str) -> str:
        return os.path.join(self.path, 'ns_' + re.sub(r'[^\w.-]', '_', namespace))

    def enabled(self) -> bool:
        return True

    def get(self, key: str) -> Any:
        """Return the cached value or NOT_FOUND."""
        entry = os.path.join(self.path, 'entries', self._hash(key))
        if not os.path.isfile(entry):
            return NOT_FOUND
        with open(entry, 'rb') as f:
            stored = packify.unpack(f.read())
        if stored.get('key') != key:
            return NOT_FOUND
        return stored['value']

    def set(self, namespace: str, key: str, value: Any) -> None:
        digest = self._hash(key)
        os.makedirs(os.path.join(self.path, 'entries'), exist_ok=True)
        with open(os.path.join(self.path, 'entries', digest), 'wb') as f:
            f.write(packify.pack({'key': key, 'value': value}))
        directory = self._namespace_dir(namespace)
        os.makedirs(directory, exist_ok=True)
        open(os.path.join(directory, digest), 'wb').close()

    def clear(self, namespace: str) -> None:
        directory = self._namespace_dir(namespace)
        if not os.path.isdir(directory):
            return
        for digest in os.listdir(directory):
            entry = os.path.join(self.path, 'entries', digest)
            if os.path.isfile(entry):
                os.remove(entry)
            os.remove(os.path.join(directory, digest))


class CacheCoordinator:
    """Decides whether a read may use the cache, serves and stores
        cached reads, and invalidates tables on writes.
    """
    shared: MemoryCache
    files: FileCache|None
    enabled: bool

    def __init__(self, shared: MemoryCache, files: FileCache|None = None,
                 enabled: bool = True) -> None:
        self.shared = shared
        self.files = files
        self.enabled = enabled

    def active(self, file_cache: bool = False, uncache_once: bool = False) -> bool:
        """True if a read may use the cache. File-cache tables always
            use their own namespace; other tables use the shared cache
            unless it is disabled globally, for this call, or for the
            current request.
        """
        if file_cache:
            return self.files is not None
        if not self.enabled or not self.shared.enabled():
            return False
        return not uncache_once and not cache_bypassed()

    def backend(self, file_cache: bool = False) -> MemoryCache|FileCache:
        return self.files if file_cache and self.files is not None else self.shared

    def lookup(self, sql: str, file_cache: bool = False) -> Any:
        value = self.backend(file_cache).get(sql)
        logger.debug('cache %s: %s', 'miss' if value is NOT_FOUND else 'hit', sql)
        return value

    def store(self, sql: str, tables: list[str], value: Any,
              file_cache: bool = False) -> None:
        backend = self.backend(file_cache)
        for table in tables:
            backend.set(table, sql, value)

    def invalidate(self, tables: list[str]) -> None:
        """Clear every namespace named in tables, in both backends."""
        for table in tables:
            logger.debug('cache invalidate: %s', table)
            self.shared.clear(table)
            if self.files is not None:
                self.files.clear(table)
