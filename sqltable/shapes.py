"""
    Query-shape parameters. Callers may pass fields, where, order, group
    and limit arguments as strings, sequences or mappings; each argument
    kind has a single normalizer that turns the loose input into one of
    the tagged variants below. Everything downstream of the normalizers
    dispatches on the variant only.
"""

from __future__ import annotations
from .errors import tert
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FromRaw:
    """A literal SQL fragment, used verbatim."""
    text: str


@dataclass(frozen=True)
class FromList:
    """An ordered sequence of items."""
    items: tuple


@dataclass(frozen=True)
class FromMap:
    """An ordered sequence of (key, value) pairs."""
    items: tuple[tuple[Any, Any], ...]

    def keys(self) -> list:
        return [k for k, _ in self.items]


Shape = FromRaw|FromList|FromMap

_shapes = (FromRaw, FromList, FromMap)


def _shape(value: Any, name: str) -> Shape|None:
    if value is None or isinstance(value, _shapes):
        return value
    if isinstance(value, str):
        return FromRaw(value) if value.strip() else None
    if isinstance(value, (list, tuple)):
        return FromList(tuple(value)) if len(value) else None
    if isinstance(value, dict):
        return FromMap(tuple(value.items())) if len(value) else None
    raise TypeError(f'{name} must be str, list, tuple, or dict')

def fields_shape(value: Any) -> Shape|None:
    """Normalize a fields argument. Raises TypeError for other types."""
    return _shape(value, 'fields')

def where_shape(value: Any) -> Shape|None:
    """Normalize a where or having argument. An int is shorthand for
        an id match. Raises TypeError for other types.
    """
    if type(value) is int:
        return FromMap((('id', value),))
    return _shape(value, 'where')

def order_shape(value: Any) -> Shape|None:
    """Normalize an order-by argument. Raises TypeError for other types."""
    return _shape(value, 'order_by')

def group_shape(value: Any) -> Shape|None:
    """Normalize a group-by argument. Raises TypeError for other types."""
    return _shape(value, 'group_by')

def limit_shape(value: Any) -> Shape|None:
    """Normalize a limit argument. An int is the row count; a pair is
        (offset, count). Raises TypeError for other types.
    """
    if type(value) is int:
        return FromRaw(str(value))
    if isinstance(value, (list, tuple)):
        tert(len(value) in (1, 2) and all([type(v) is int for v in value]),
            'limit must be int or (offset, count)')
    tert(not isinstance(value, dict), 'limit must be int, str, or (offset, count)')
    return _shape(value, 'limit')
