"""
Transition outcomes for atomic operations.

A transition function handed to the atomic coordinator returns one of:
- Continue(value): persist ``value``
- ABORT: stop without writing; the operation yields no value

Aborting is a normal outcome, not an error.

Example:
    >>> async def bump(existing):
    ...     if existing is None:
    ...         return ABORT
    ...     existing["views"] += 1
    ...     return Continue(existing)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Continue(Generic[T]):
    """Persist the wrapped value."""

    value: T


@dataclass(frozen=True)
class Abort:
    """Stop the operation without writing."""


ABORT = Abort()

Outcome = Union[Continue[T], Abort]


def check_outcome(result: Any) -> Continue[Any] | Abort:
    """Return ``result`` if it is an outcome.

    Raises:
        TypeError: If a transition function returned anything else
    """
    if isinstance(result, (Continue, Abort)):
        return result
    raise TypeError(
        "Transition functions must return Continue(value) or ABORT, "
        f"got {type(result).__name__}"
    )
