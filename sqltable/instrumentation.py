"""
    Logging for the package. Every module takes its logger from
    `get_logger`, which places it under the `sqltable` namespace, and
    every executed statement is timed and logged through `SqlLogger`.
"""

from __future__ import annotations
from typing import Any, Callable
import logging
import time


logger = logging.getLogger('sqltable')


def get_logger(name: str|None = None) -> logging.Logger:
    """Get a logger namespaced under `sqltable`."""
    if not name:
        return logger
    if not name.startswith('sqltable.'):
        name = f'sqltable.{name}'
    return logging.getLogger(name)


class SqlLogger:
    """Times statements and reports them to the statement logger and,
        for mutations, to the configured operation log.
    """
    logger: logging.Logger
    operation_log: Callable|None
    no_log_tables: tuple[str]

    def __init__(self, operation_log: Callable|None = None,
                 no_log_tables: tuple[str]|list[str] = ()) -> None:
        self.logger = get_logger('sql')
        self.operation_log = operation_log
        self.no_log_tables = tuple(no_log_tables)

    def before(self, operation: str, sql: str) -> float:
        """Mark the start of a statement and return the start time."""
        self.logger.debug('%s start: %s', operation, sql)
        return time.perf_counter()

    def after(self, operation: str, sql: str, params: Any, started: float,
              rows: int|None = None) -> float:
        """Log a finished statement and return the elapsed seconds."""
        elapsed = time.perf_counter() - started
        self.logger.debug(
            '%s done in %.6fs: %s params=%r rows=%s',
            operation, elapsed, sql, params, rows
        )
        return elapsed

    def records(self, table: str) -> bool:
        """True if mutations against the table go to the operation log."""
        return self.operation_log is not None and table not in self.no_log_tables

    def record(self, table: str, operation: str, payload: dict) -> None:
        """Send a mutation to the operation log."""
        if not self.records(table):
            return
        self.logger.debug('operation log %s on %s', operation, table)
        self.operation_log(table, operation, payload)
