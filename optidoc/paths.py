"""
Runtime path-shape validation for optidoc schemas.

Index, unique-key and partition-key paths are slash-separated property
paths such as ``/address/postal`` or ``/tags/[]/name/?``. Whether a path is
legal depends on the shape of the field it walks through, which is derived
from the field's JSON-Schema fragment.

Index paths (add_to_index, remove_from_index):
    - ``/*`` is always valid
    - SCALAR leaf: ``/k/?``
    - SCALAR_ARRAY leaf: ``/k/*`` or ``/k/?``
    - OBJECT: ``/k/*`` or descend into a sub-field ``/k/<sub>...``
    - OBJECT_ARRAY: ``/k/[]/<sub>...``
    - ANY: any continuation ending in ``?`` or ``*``

Simple paths (unique, partition_key, conflictResolutionPath):
    - SCALAR leaf: ``/k``
    - OBJECT: must descend to a scalar sub-field
    - arrays are rejected
    - ANY: ``/k`` and anything deeper

Invariants:
    - Validation never mutates its inputs
    - Every rejection is a SchemaPathError naming the offending path

How to change safely:
    - Keep shape_of() total: unknown fragments map to ANY, never raise
    - Add new shapes to both walkers
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from .errors import SchemaPathError

INDEX_ALL = "/*"

_SCALAR_TYPES = frozenset({"string", "number", "integer", "boolean", "null"})
_WILDCARDS = frozenset({"*", "?", "[]"})


class ShapeKind(Enum):
    """Structural kind of a field, as far as paths are concerned."""

    SCALAR = "scalar"
    SCALAR_ARRAY = "scalar_array"
    OBJECT = "object"
    OBJECT_ARRAY = "object_array"
    ANY = "any"


@dataclass(frozen=True)
class FieldShape:
    """Shape of a field plus the shapes of its sub-fields.

    For OBJECT fields ``children`` holds the declared properties; for
    OBJECT_ARRAY fields it holds the properties of the array elements.
    """

    kind: ShapeKind
    children: tuple[tuple[str, FieldShape], ...] = dataclass_field(default_factory=tuple)

    def child(self, name: str) -> FieldShape | None:
        for child_name, shape in self.children:
            if child_name == name:
                return shape
        return None

    def child_names(self) -> list[str]:
        return [name for name, _ in self.children]


ANY_SHAPE = FieldShape(ShapeKind.ANY)


def _json_type(fragment: Mapping[str, Any]) -> str | None:
    declared = fragment.get("type")
    if isinstance(declared, str):
        return declared
    if isinstance(declared, (list, tuple)):
        # Nullable unions like ["string", "null"] take the non-null member.
        non_null = [t for t in declared if t != "null"]
        if len(non_null) == 1:
            return non_null[0]
        if not non_null:
            return "null"
    return None


def shape_of(fragment: Mapping[str, Any] | None) -> FieldShape:
    """Derive a FieldShape from a JSON-Schema fragment.

    Args:
        fragment: The field's validation fragment, or None

    Returns:
        The derived shape. Anything not recognized is ANY.
    """
    if not fragment:
        return ANY_SHAPE

    json_type = _json_type(fragment)
    if json_type is None:
        if "enum" in fragment or "const" in fragment:
            return FieldShape(ShapeKind.SCALAR)
        return ANY_SHAPE

    if json_type in _SCALAR_TYPES:
        return FieldShape(ShapeKind.SCALAR)

    if json_type == "object":
        properties = fragment.get("properties")
        if not isinstance(properties, Mapping):
            return ANY_SHAPE
        return FieldShape(
            ShapeKind.OBJECT,
            tuple((name, shape_of(sub)) for name, sub in properties.items()),
        )

    if json_type == "array":
        items = fragment.get("items")
        if not isinstance(items, Mapping):
            return ANY_SHAPE
        item_shape = shape_of(items)
        if item_shape.kind is ShapeKind.SCALAR:
            return FieldShape(ShapeKind.SCALAR_ARRAY)
        if item_shape.kind is ShapeKind.OBJECT:
            return FieldShape(ShapeKind.OBJECT_ARRAY, item_shape.children)
        return ANY_SHAPE

    return ANY_SHAPE


def split_path(path: str) -> list[str]:
    """Split ``/a/b/c`` into ``["a", "b", "c"]``.

    Raises:
        SchemaPathError: If the path is not absolute or has empty segments
    """
    if not isinstance(path, str) or not path.startswith("/"):
        raise SchemaPathError(str(path), "paths must start with '/'")
    segments = path[1:].split("/")
    if any(not segment for segment in segments):
        raise SchemaPathError(path, "paths cannot contain empty segments")
    return segments


def _lookup_root(
    path: str,
    segments: list[str],
    shapes: Mapping[str, FieldShape],
) -> FieldShape:
    name = segments[0]
    shape = shapes.get(name)
    if shape is None:
        raise SchemaPathError(
            path,
            f"field '{name}' is not declared (known: {', '.join(shapes)})",
        )
    return shape


def _descend(path: str, shape: FieldShape, name: str) -> FieldShape:
    child = shape.child(name)
    if child is None:
        known = shape.child_names()
        raise SchemaPathError(
            path,
            f"sub-field '{name}' is not declared (known: {', '.join(known)})",
        )
    return child


def check_index_path(path: str, shapes: Mapping[str, FieldShape]) -> None:
    """Validate an indexing path against the declared field shapes.

    Args:
        path: Path such as ``/username/?`` or ``/address/*``
        shapes: Top-level field name -> shape

    Raises:
        SchemaPathError: If the path does not fit the shapes
    """
    if path == INDEX_ALL:
        return

    segments = split_path(path)
    shape = _lookup_root(path, segments, shapes)
    rest = segments[1:]

    while True:
        kind = shape.kind
        if kind is ShapeKind.SCALAR:
            if rest != ["?"]:
                raise SchemaPathError(path, "scalar fields are indexed as '/<field>/?'")
            return

        if kind is ShapeKind.SCALAR_ARRAY:
            if rest not in (["*"], ["?"]):
                raise SchemaPathError(
                    path, "scalar arrays are indexed as '/<field>/*' or '/<field>/?'"
                )
            return

        if kind is ShapeKind.OBJECT:
            if rest == ["*"]:
                return
            if not rest or rest[0] in _WILDCARDS:
                raise SchemaPathError(
                    path, "objects are indexed as '/<field>/*' or through a sub-field"
                )
            shape = _descend(path, shape, rest[0])
            rest = rest[1:]
            continue

        if kind is ShapeKind.OBJECT_ARRAY:
            if len(rest) < 2 or rest[0] != "[]" or rest[1] in _WILDCARDS:
                raise SchemaPathError(
                    path, "object arrays are indexed as '/<field>/[]/<sub-field>...'"
                )
            shape = _descend(path, shape, rest[1])
            rest = rest[2:]
            continue

        # ANY: the schema cannot say more, only the terminator is checked.
        if not rest or rest[-1] not in ("?", "*"):
            raise SchemaPathError(path, "index paths must end in '/?' or '/*'")
        return


def check_simple_path(path: str, shapes: Mapping[str, FieldShape]) -> None:
    """Validate a unique-key, partition-key or conflict-resolution path.

    Args:
        path: Path such as ``/id`` or ``/address/postal``
        shapes: Top-level field name -> shape

    Raises:
        SchemaPathError: If the path does not resolve to a scalar value
    """
    segments = split_path(path)
    if any(segment in _WILDCARDS for segment in segments):
        raise SchemaPathError(path, "wildcards are not allowed here")

    shape = _lookup_root(path, segments, shapes)
    rest = segments[1:]

    while True:
        kind = shape.kind
        if kind is ShapeKind.SCALAR:
            if rest:
                raise SchemaPathError(path, "cannot descend into a scalar field")
            return

        if kind in (ShapeKind.SCALAR_ARRAY, ShapeKind.OBJECT_ARRAY):
            raise SchemaPathError(path, "array fields cannot be used here")

        if kind is ShapeKind.OBJECT:
            if not rest:
                raise SchemaPathError(path, "objects must be followed down to a scalar sub-field")
            shape = _descend(path, shape, rest[0])
            rest = rest[1:]
            continue

        return


def lookup_path(document: Mapping[str, Any], path: str) -> Any:
    """Return the value at ``path`` inside ``document``, or None."""
    value: Any = document
    for part in path[1:].split("/"):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value
