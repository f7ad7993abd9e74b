from __future__ import annotations
from .errors import tert, tressa
from dataclasses import dataclass, field, replace
from os import environ
from typing import Any, Callable


@dataclass
class DatabaseConfig:
    """Process configuration for table handles. `tables` maps aliases
        to physical names before the prefix and suffix are applied.
        `connections` maps aliases to a connection string or to a dict
        with 'read' and 'write' connection strings; the '_default'
        entry applies to every other alias.
    """
    prefix: str = ''
    suffix: str = ''
    tables: dict[str, str] = field(default_factory=dict)
    connections: dict[str, str|dict] = field(default_factory=dict)
    enable_multi: bool = False
    auto_field: bool = False
    cache_enabled: bool = True
    file_cache_path: str = '.sqltable_cache'
    no_log_tables: tuple[str] = ()
    operation_log: Callable[[str, str, dict], Any]|None = None
    default_table: str|None = None
    document_store: Callable[[str], Any]|None = None

    @classmethod
    def from_env(cls, **overrides) -> DatabaseConfig:
        """Build a config from SQLTABLE_* environment variables, then
            apply the overrides.
        """
        connections = {}
        if environ.get('SQLTABLE_CONNECTION'):
            connections['_default'] = environ['SQLTABLE_CONNECTION']
        config = cls(
            prefix=environ.get('SQLTABLE_PREFIX', ''),
            suffix=environ.get('SQLTABLE_SUFFIX', ''),
            connections=connections,
            enable_multi=environ.get('SQLTABLE_MULTI', '0').lower() in ('1', 'true', 'yes'),
            cache_enabled=environ.get('SQLTABLE_CACHE', '1').lower() not in ('0', 'false', 'no'),
            file_cache_path=environ.get('SQLTABLE_FILE_CACHE_PATH', '.sqltable_cache'),
        )
        return replace(config, **overrides)

    def physical_name(self, alias: str) -> str:
        """The physical table name for an alias."""
        tert(type(alias) is str, 'alias must be str')
        return f'{self.prefix}{self.tables.get(alias, alias)}{self.suffix}'

    def connection_info(self, alias: str, role: str = 'write') -> str:
        """The connection string for the alias and role. Raises
            UsageError if nothing is configured.
        """
        info = self.connections.get(alias, self.connections.get('_default'))
        if isinstance(info, dict):
            info = info.get(role, info.get('write'))
        tressa(type(info) is str and len(info) > 0,
            f'no connection configured for {alias}')
        return info


_config: DatabaseConfig|None = None


def get_config() -> DatabaseConfig:
    """The process configuration; built from the environment on first
        use.
    """
    global _config
    if _config is None:
        _config = DatabaseConfig.from_env()
    return _config

def configure(config: DatabaseConfig|None = None, **options) -> DatabaseConfig:
    """Install a new process configuration. Table handles built under
        the previous configuration are rebuilt on next use.
    """
    global _config
    tert(config is None or isinstance(config, DatabaseConfig),
        'config must be a DatabaseConfig')
    _config = replace(config, **options) if config else DatabaseConfig.from_env(**options)
    return _config
