from __future__ import annotations
from typing import Any, Callable

from jirasql.plugin.models import Transform, TransformData


def _lookup(obj: Any, path: str) -> Any:
    """Walk a dotted path over attributes or mapping keys. Missing → None."""
    for part in path.split("."):
        if obj is None:
            return None
        if isinstance(obj, dict):
            obj = obj.get(part)
        else:
            obj = getattr(obj, part, None)
    return obj


def from_go() -> Transform:
    """Attribute named like the column on the listed item."""
    return lambda d: _lookup(d.item, d.column_name)


def from_field(path: str) -> Transform:
    """
    Dotted path into the hydrate output when the column has a hydrate func,
    otherwise into the listed item.
    """
    def _transform(d: TransformData) -> Any:
        source = d.hydrate_item if d.hydrate_item is not None else d.item
        return _lookup(source, path)
    return _transform


def from_hydrate(fn: Callable[[Any], Any]) -> Transform:
    """Apply fn to the raw hydrate output."""
    return lambda d: fn(d.hydrate_item)


def apply(transform: Transform | None, data: TransformData) -> Any:
    return (transform or from_go())(data)
