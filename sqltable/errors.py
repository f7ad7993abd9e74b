class UsageError(Exception):
    """Raised when the library is used incorrectly."""
    ...


class TableError(Exception):
    """Base class for errors raised by table handles and statements."""
    ...


class ConsistencyError(TableError):
    """Raised when a statement would touch a table other than the one
        the handle is bound to, when a mutation lacks a where
        condition, or when transactions are misused.
    """
    ...


class RelationFormatError(TableError):
    """Raised for a malformed relation descriptor."""
    ...


class BindError(TableError):
    """Raised when the driver rejects prepared parameters."""
    ...


class UnsupportedOperationError(TableError):
    """Raised when an unrecognized operation reaches rendering."""
    ...


class RecordLoadError(TableError):
    """Raised when a record cannot be loaded from the given arguments."""
    ...


def vert(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a ValueError with the given message."""
    if not condition:
        raise ValueError(error_message)

def tert(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a TypeError with the given message."""
    if not condition:
        raise TypeError(error_message)

def tressa(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a UsageError with the given message."""
    if not condition:
        raise UsageError(error_message)
