"""
Field transforms for optidoc.

A Transform maps one field between its stored (JSON) representation and
the value the application works with, e.g. a stored list <-> a Python set.

Invariants:
    - serialize(deserialize(x)) == x for every value the store may hold
    - deserialize(serialize(y)) == y for every value the application may hold
    - Transforms are stateless and safe to share between schemas

Example:
    >>> colors = set_transform()
    >>> colors.deserialize(["blue", "red"])
    {'blue', 'red'}
    >>> colors.serialize({"red", "blue"})
    ['blue', 'red']
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable


@dataclass(frozen=True)
class Transform:
    """Bidirectional codec for a single field.

    Attributes:
        deserialize: Stored value -> application value
        serialize: Application value -> stored value
        name: Label used in logs and error messages
    """

    deserialize: Callable[[Any], Any]
    serialize: Callable[[Any], Any]
    name: str = "custom"


def identity() -> Transform:
    """Transform that leaves values untouched."""
    return Transform(deserialize=lambda v: v, serialize=lambda v: v, name="identity")


def _sorted_if_possible(values: Any) -> list[Any]:
    items = list(values)
    try:
        return sorted(items)
    except TypeError:
        return items


def set_transform() -> Transform:
    """Stored JSON array <-> Python set.

    Serialized arrays are sorted when the items are orderable so the stored
    form does not depend on set iteration order.
    """
    return Transform(deserialize=set, serialize=_sorted_if_possible, name="set")


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def datetime_transform() -> Transform:
    """Stored ISO-8601 string <-> timezone-aware datetime (naive means UTC)."""
    return Transform(
        deserialize=_parse_datetime,
        serialize=_format_datetime,
        name="datetime",
    )
