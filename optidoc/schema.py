"""
Schema types for optidoc.

This module provides the description of a collection:
- FieldDef: One field, its JSON-Schema fragment and optional transform
- IndexedPath: An included indexing path with its index specs
- Schema: Immutable, builder-constructed collection description

A Schema is built once at startup through chained builder calls and then
shared by every model of that collection. Paths given to the builder are
checked against the declared field shapes immediately.

Invariants:
    - A Schema never changes after construction; builders return new values
    - ``id`` is always the first field and always required
    - Field names are non-empty, contain no '/', and never start with '_'
    - Every recorded path is consistent with the current field shapes

How to change safely:
    - New builder methods must go through dataclasses.replace()
    - Deep-copy any mutable input on the way in and on the way out
    - Keep ``definition`` in the store's container-request shape

Example:
    >>> users = (
    ...     create_schema("users")
    ...     .field("username", {"type": "string"}, required=True)
    ...     .field("favoriteColors", {"type": "array", "items": {"type": "string"}},
    ...            transform=set_transform())
    ...     .partition_key("/id")
    ...     .unique("/username")
    ... )
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from functools import cached_property
from typing import Any

from jsonschema import Draft7Validator

from .paths import INDEX_ALL, FieldShape, check_index_path, check_simple_path, shape_of
from .transform import Transform
from .validate import compile_validator

ID_FIELD = "id"
TTL_WITHOUT_DEFAULT = -1
GEOSPATIAL_TYPES = ("Geography", "Geometry")
THROUGHPUT_KEYS = ("throughput", "maxThroughput", "autoUpgradePolicy")

# Store-maintained properties that conflict resolution may reference.
_SYSTEM_PATHS = frozenset({"/_ts"})


@dataclass(frozen=True)
class FieldDef:
    """Field definition within a schema.

    Attributes:
        name: Property name in the stored document
        validation: JSON-Schema fragment for the stored representation
        required: Whether the property must be present
        transform: Optional stored <-> application codec
        shape: Path shape derived from ``validation``
    """

    name: str
    validation: Mapping[str, Any] | None = None
    required: bool = False
    transform: Transform | None = None
    shape: FieldShape = dataclass_field(init=False, compare=False)

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if "/" in self.name:
            raise ValueError(f"Field name cannot contain '/': {self.name!r}")
        if self.name.startswith("_"):
            raise ValueError(
                f"Field name cannot start with '_' (reserved for store metadata): {self.name!r}"
            )
        object.__setattr__(self, "shape", shape_of(self.validation))

    def fragment(self) -> dict[str, Any]:
        """Return a copy of the JSON-Schema fragment (empty means 'anything')."""
        return copy.deepcopy(dict(self.validation)) if self.validation else {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"name": self.name, "shape": self.shape.kind.value}
        if self.validation:
            result["validation"] = self.fragment()
        if self.required:
            result["required"] = True
        if self.transform is not None:
            result["transform"] = self.transform.name
        return result

    def __hash__(self) -> int:
        return hash(self.name)


@dataclass(frozen=True)
class IndexedPath:
    """An included indexing path."""

    path: str
    indexes: tuple[Mapping[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "indexes": [copy.deepcopy(dict(i)) for i in self.indexes]}

    def __hash__(self) -> int:
        return hash(self.path)


def _id_field() -> FieldDef:
    return FieldDef(ID_FIELD, {"type": "string"}, required=True)


@dataclass(frozen=True)
class Schema:
    """Immutable description of a collection.

    Use create_schema() and the builder methods rather than constructing
    this directly. Every builder method returns a new Schema.

    Attributes:
        container_id: Name of the store container
        fields: Ordered field definitions, ``id`` first
        partition_key_path: Path of the partition key, if set
        partition_key_version: 1, or 2 for large partition keys
        default_ttl: Default TTL in seconds, -1 for "enabled without default"
        included_paths: Paths added to the index
        excluded_paths: Paths removed from the index
        unique_keys: Unique key path groups
        conflict_resolution: Conflict resolution policy
        geospatial_type: "Geography" or "Geometry"
        throughput: Provisioned RU/s
        max_throughput: Autoscale maximum RU/s
        auto_upgrade_policy: Autoscale upgrade policy
    """

    container_id: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=lambda: (_id_field(),))
    partition_key_path: str | None = None
    partition_key_version: int | None = None
    default_ttl: int | None = None
    included_paths: tuple[IndexedPath, ...] = ()
    excluded_paths: tuple[str, ...] = ()
    unique_keys: tuple[tuple[str, ...], ...] = ()
    conflict_resolution: Mapping[str, Any] | None = None
    geospatial_type: str | None = None
    throughput: int | None = None
    max_throughput: int | None = None
    auto_upgrade_policy: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate schema definition."""
        if not self.container_id:
            raise ValueError("container_id cannot be empty")
        if not self.fields or self.fields[0].name != ID_FIELD:
            raise ValueError("The first field of a schema must be 'id'")

        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field name in schema '{self.container_id}'")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_field(self, name: str) -> FieldDef | None:
        """Get field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> list[str]:
        """Get list of field names, in declaration order."""
        return [f.name for f in self.fields]

    def shapes(self) -> dict[str, FieldShape]:
        """Top-level field name -> path shape."""
        return {f.name: f.shape for f in self.fields}

    def transformed_fields(self) -> list[FieldDef]:
        """Fields that carry a transform."""
        return [f for f in self.fields if f.transform is not None]

    # ------------------------------------------------------------------
    # Builder
    # ------------------------------------------------------------------

    def field(
        self,
        name: str,
        validation: Mapping[str, Any] | None = None,
        *,
        required: bool = False,
        transform: Transform | None = None,
    ) -> Schema:
        """Add a field, or replace an existing one in place.

        Args:
            name: Property name
            validation: JSON-Schema fragment for the stored representation
            required: Whether the property must be present
            transform: Optional codec between stored and application values

        Returns:
            The new schema

        Raises:
            ValueError: If the name is invalid
            SchemaPathError: If a recorded path no longer fits the new shape
        """
        new_field = FieldDef(
            name=name,
            validation=copy.deepcopy(dict(validation)) if validation is not None else None,
            required=required or name == ID_FIELD,
            transform=transform,
        )

        if self.get_field(name) is None:
            fields = self.fields + (new_field,)
        else:
            fields = tuple(new_field if f.name == name else f for f in self.fields)

        updated = replace(self, fields=fields)
        updated._recheck_paths()
        return updated

    def partition_key(self, path: str, large: bool = False) -> Schema:
        """Set the path forming the partition key.

        Args:
            path: Simple path to a scalar field, e.g. ``/id``
            large: Use version 2 (large) partition keys
        """
        check_simple_path(path, self.shapes())
        return replace(self, partition_key_path=path, partition_key_version=2 if large else 1)

    def ttl(self, seconds: int | None) -> Schema:
        """Set the default TTL in seconds for the container.

        - None: items never expire (the default)
        - positive: items expire after the given time
        - -1: items may expire, but there is no default TTL
        """
        if seconds is not None:
            if isinstance(seconds, bool) or not isinstance(seconds, int):
                raise ValueError(f"ttl must be an integer, got {seconds!r}")
            if seconds != TTL_WITHOUT_DEFAULT and seconds <= 0:
                raise ValueError(f"ttl must be -1 or positive, got {seconds}")
        return replace(self, default_ttl=seconds)

    def enable_ttl_without_default(self) -> Schema:
        """Enable TTL without a default, equivalent to ``ttl(-1)``."""
        return self.ttl(TTL_WITHOUT_DEFAULT)

    def add_to_index(self, path: str, *indexes: Mapping[str, Any]) -> Schema:
        """Add a path to the index, with optional index specs."""
        check_index_path(path, self.shapes())
        entry = IndexedPath(path, tuple(copy.deepcopy(dict(i)) for i in indexes))
        return replace(self, included_paths=self.included_paths + (entry,))

    def remove_from_index(self, *paths: str) -> Schema:
        """Exclude paths from indexing."""
        shapes = self.shapes()
        for path in paths:
            check_index_path(path, shapes)
        return replace(self, excluded_paths=self.excluded_paths + tuple(paths))

    def remove_all_from_index(self) -> Schema:
        """Exclude everything from indexing unless explicitly included."""
        return self.remove_from_index(INDEX_ALL)

    def unique(self, *paths: str) -> Schema:
        """Add a unique key made of the given paths (unique per partition)."""
        if not paths:
            raise ValueError("unique() needs at least one path")
        shapes = self.shapes()
        for path in paths:
            check_simple_path(path, shapes)
        return replace(self, unique_keys=self.unique_keys + (tuple(paths),))

    def set_conflict_resolution(self, policy: Mapping[str, Any]) -> Schema:
        """Set the conflict resolution policy.

        A ``conflictResolutionPath`` in the policy must be a simple path, or
        the store-maintained ``/_ts``.
        """
        path = policy.get("conflictResolutionPath")
        if path is not None and path not in _SYSTEM_PATHS:
            check_simple_path(path, self.shapes())
        return replace(self, conflict_resolution=copy.deepcopy(dict(policy)))

    def set_geospatial_config(self, kind: str) -> Schema:
        """Set the geospatial type, "Geography" or "Geometry"."""
        if kind not in GEOSPATIAL_TYPES:
            raise ValueError(f"geospatial type must be one of {GEOSPATIAL_TYPES}, got {kind!r}")
        return replace(self, geospatial_type=kind)

    def set_throughput(self, throughput: int | Mapping[str, Any]) -> Schema:
        """Set the container throughput.

        Args:
            throughput: RU/s as an int, or a mapping with any of
                ``throughput``, ``maxThroughput`` and ``autoUpgradePolicy``
        """
        if isinstance(throughput, Mapping):
            unknown = set(throughput) - set(THROUGHPUT_KEYS)
            if unknown:
                raise ValueError(f"Unknown throughput settings: {sorted(unknown)}")
            changes: dict[str, Any] = {}
            if "throughput" in throughput:
                changes["throughput"] = throughput["throughput"]
            if "maxThroughput" in throughput:
                changes["max_throughput"] = throughput["maxThroughput"]
            if "autoUpgradePolicy" in throughput:
                changes["auto_upgrade_policy"] = copy.deepcopy(
                    dict(throughput["autoUpgradePolicy"])
                )
            return replace(self, **changes)

        if isinstance(throughput, bool) or not isinstance(throughput, int) or throughput <= 0:
            raise ValueError(f"throughput must be a positive integer, got {throughput!r}")
        return replace(self, throughput=throughput)

    def _recheck_paths(self) -> None:
        shapes = self.shapes()
        if self.partition_key_path is not None:
            check_simple_path(self.partition_key_path, shapes)
        for included in self.included_paths:
            check_index_path(included.path, shapes)
        for excluded in self.excluded_paths:
            check_index_path(excluded, shapes)
        for key in self.unique_keys:
            for path in key:
                check_simple_path(path, shapes)
        if self.conflict_resolution:
            path = self.conflict_resolution.get("conflictResolutionPath")
            if path is not None and path not in _SYSTEM_PATHS:
                check_simple_path(path, shapes)

    # ------------------------------------------------------------------
    # Derived outputs
    # ------------------------------------------------------------------

    @property
    def definition(self) -> dict[str, Any]:
        """Container-request document for provisioning.

        Keys that were never configured are omitted.
        """
        result: dict[str, Any] = {"id": self.container_id}
        if self.partition_key_path is not None:
            result["partitionKey"] = {
                "paths": [self.partition_key_path],
                "version": self.partition_key_version,
            }
        if self.default_ttl is not None:
            result["defaultTtl"] = self.default_ttl

        indexing: dict[str, Any] = {}
        if self.included_paths:
            indexing["includedPaths"] = [p.to_dict() for p in self.included_paths]
        if self.excluded_paths:
            indexing["excludedPaths"] = [{"path": p} for p in self.excluded_paths]
        if indexing:
            result["indexingPolicy"] = indexing

        if self.unique_keys:
            result["uniqueKeyPolicy"] = {
                "uniqueKeys": [{"paths": list(key)} for key in self.unique_keys]
            }
        if self.conflict_resolution is not None:
            result["conflictResolutionPolicy"] = copy.deepcopy(dict(self.conflict_resolution))
        if self.geospatial_type is not None:
            result["geospatialConfig"] = {"type": self.geospatial_type}
        if self.throughput is not None:
            result["throughput"] = self.throughput
        if self.max_throughput is not None:
            result["maxThroughput"] = self.max_throughput
        if self.auto_upgrade_policy is not None:
            result["autoUpgradePolicy"] = copy.deepcopy(dict(self.auto_upgrade_policy))
        return result

    def json_schema(self) -> dict[str, Any]:
        """Whole-document JSON Schema derived from the fields."""
        return {
            "type": "object",
            "required": [f.name for f in self.fields if f.required],
            "properties": {f.name: f.fragment() for f in self.fields},
        }

    @cached_property
    def validator(self) -> Draft7Validator:
        """Compiled validator for json_schema(), built on first use."""
        return compile_validator(self.json_schema())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "container_id": self.container_id,
            "fields": [f.to_dict() for f in self.fields],
            "definition": self.definition,
        }

    def __hash__(self) -> int:
        return hash(self.container_id)


def create_schema(container_id: str) -> Schema:
    """Start a schema for the given container, with only the ``id`` field.

    Example:
        >>> schema = create_schema("users").partition_key("/id")
    """
    return Schema(container_id=container_id)
