"""
optidoc - Object-document mapping for partitioned document stores.

This package maps application objects onto documents in a partitioned,
eventually-consistent document store such as Azure Cosmos DB:
- Schema builder with per-field JSON Schema validation and transforms
- Models with lifecycle hooks and etag-guarded create/update/delete
- Atomic read-transform-write operations with conflict retries
- Partition accessors, parameterized queries and container provisioning

Example:
    >>> from optidoc import Continue, Model, create_schema, set_transform
    >>>
    >>> users = (
    ...     create_schema("users")
    ...     .field("username", {"type": "string"}, required=True)
    ...     .field("favoriteColors", {"type": "array", "items": {"type": "string"}},
    ...            transform=set_transform())
    ...     .partition_key("/id")
    ... )
    >>>
    >>> class User(Model, schema=users):
    ...     pass
    >>>
    >>> async def add_color(user):
    ...     user["favoriteColors"].add("blue")
    ...     return Continue(user)
    >>>
    >>> user = await User.partition("1").find("1")
    >>> await user.update_using(add_color)

Invariants:
    - Schemas are immutable; builder methods return new schemas
    - Writes are guarded by etags unless forced
    - Nothing is sent to the store when validation fails

Version: 1.0.0
"""

__version__ = "1.0.0"

from . import atomic
from .config import CosmosSettings, OptidocSettings, get_settings
from .container import Container
from .errors import (
    CodecError,
    ConflictError,
    ConflictReason,
    EntityDeletedError,
    NotFoundError,
    OptidocError,
    PreconditionMissingError,
    RetriesExhaustedError,
    SchemaPathError,
    StoreNotConfiguredError,
    UnknownFieldError,
    ValidationError,
)
from .log import setup_logging
from .model import EntityState, Model
from .outcome import ABORT, Abort, Continue
from .partition import Partition
from .query import FeedResponse, Query, QueryIterator, QuerySpec, sql
from .registry import (
    StoreRegistry,
    connect_models,
    get_registry,
    reset_registry,
)
from .schema import FieldDef, Schema, create_schema
from .store import (
    CosmosDocumentStore,
    DocumentStore,
    InMemoryDocumentStore,
    ResourceResponse,
    create_document_store,
)
from .transform import Transform, datetime_transform, identity, set_transform

__all__ = [
    # Version
    "__version__",
    # Schema
    "Schema",
    "FieldDef",
    "create_schema",
    # Transforms
    "Transform",
    "identity",
    "set_transform",
    "datetime_transform",
    # Models
    "Model",
    "EntityState",
    "Partition",
    "Container",
    "atomic",
    "Continue",
    "Abort",
    "ABORT",
    # Queries
    "sql",
    "Query",
    "QuerySpec",
    "QueryIterator",
    "FeedResponse",
    # Stores
    "DocumentStore",
    "ResourceResponse",
    "InMemoryDocumentStore",
    "CosmosDocumentStore",
    "create_document_store",
    "StoreRegistry",
    "get_registry",
    "connect_models",
    "reset_registry",
    # Configuration
    "OptidocSettings",
    "CosmosSettings",
    "get_settings",
    "setup_logging",
    # Errors
    "OptidocError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ConflictReason",
    "PreconditionMissingError",
    "RetriesExhaustedError",
    "CodecError",
    "SchemaPathError",
    "UnknownFieldError",
    "EntityDeletedError",
    "StoreNotConfiguredError",
]
