"""
Models and the mutation engine for optidoc.

A model class is declared once per collection by subclassing Model with a
schema. Instances hold the document's properties in a schema-checked
property bag plus the store-assigned metadata (etag, last modified).

Invariants:
    - NEW entities hold no etag; PERSISTED entities do; DELETED is terminal
    - Hooks run in the order before<Op>, before_persist, <store call>,
      after_persist, after<Op>
    - Documents are serialized through the field transforms before
      validation and before every write, and deserialized right after
      every read
    - Validation and usage errors are raised before any store call
    - create/update/delete never retry; conflicts propagate immediately

How to change safely:
    - Keep store metadata out of ``props``; it lives in etag/last_modified
    - Any new write path must call _apply_document() with the store response

Example:
    >>> class User(Model, schema=user_schema):
    ...     async def before_persist(self) -> None:
    ...         self["username"] = self["username"].strip()
    >>>
    >>> user = User(id="1", username="connor")
    >>> await user.save(store=store)
    >>> user.etag is not None
    True
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, TypeVar

from .config import get_settings
from .container import Container
from .errors import (
    CodecError,
    EntityDeletedError,
    PreconditionMissingError,
    UnknownFieldError,
)
from .partition import Partition
from .paths import lookup_path
from .query import Query
from .registry import resolve_store
from .schema import ID_FIELD, Schema
from .store.base import ETAG_KEY, SYSTEM_KEYS, TIMESTAMP_KEY, DocumentStore
from .validate import suggest_fields, validate_or_raise

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


class EntityState(Enum):
    """Lifecycle state of an entity."""

    NEW = "new"
    PERSISTED = "persisted"
    DELETED = "deleted"


class Model:
    """Base class for collection models.

    Subclass with a schema to declare a collection:

        >>> class User(Model, schema=user_schema):
        ...     default_conflict_retries = 5

    Attributes:
        schema: Collection schema (class attribute)
        default_conflict_retries: Retry budget for atomic operations; None
            falls back to the configured default
    """

    schema: ClassVar[Schema]
    default_conflict_retries: ClassVar[int | None] = None

    def __init_subclass__(cls, schema: Schema | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if schema is not None:
            cls.schema = schema

    def __init__(self, props: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        """Create an entity from application values.

        Store metadata (``_etag``, ``_ts``) in ``props`` is taken as the
        entity's metadata; other store-maintained properties are dropped.

        Raises:
            TypeError: If the class has no schema
            UnknownFieldError: If a property is not declared in the schema
        """
        if getattr(type(self), "schema", None) is None:
            raise TypeError(f"{type(self).__name__} has no schema; declare it with schema=...")

        data = dict(props or {})
        data.update(kwargs)

        self._etag: str | None = data.get(ETAG_KEY)
        self._last_modified: int | None = data.get(TIMESTAMP_KEY)
        self._state = EntityState.PERSISTED if self._etag else EntityState.NEW
        self._props: dict[str, Any] = {}

        for name, value in data.items():
            if name in SYSTEM_KEYS:
                continue
            self._check_field(name)
            self._props[name] = value

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def props(self) -> dict[str, Any]:
        """The raw property bag (application representation)."""
        return self._props

    @property
    def id(self) -> str:
        return self._props.get(ID_FIELD)  # type: ignore[return-value]

    @property
    def etag(self) -> str | None:
        """Etag of the data when it was last read or written, if ever."""
        return self._etag

    @property
    def last_modified(self) -> int | None:
        """Store timestamp (seconds since epoch) of the last read or write."""
        return self._last_modified

    @property
    def updated_at(self) -> datetime | None:
        """Time the document was last updated, if known."""
        if self._last_modified is None:
            return None
        return datetime.fromtimestamp(self._last_modified, tz=timezone.utc)

    @property
    def state(self) -> EntityState:
        return self._state

    def _check_field(self, name: str) -> None:
        schema = type(self).schema
        if schema.get_field(name) is None:
            raise UnknownFieldError(name, schema.container_id, suggest_fields(name, schema))

    def __getitem__(self, name: str) -> Any:
        self._check_field(name)
        return self._props.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self._check_field(name)
        self._props[name] = value

    def __delitem__(self, name: str) -> None:
        self._check_field(name)
        self._props.pop(name, None)

    def __contains__(self, name: object) -> bool:
        return name in self._props

    def get(self, name: str, default: Any = None) -> Any:
        """Like dict.get(), but unknown names still raise UnknownFieldError."""
        self._check_field(name)
        return self._props.get(name, default)

    def to_object(self) -> dict[str, Any]:
        """Copy of the properties, without store metadata."""
        return copy.deepcopy(self._props)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, state={self._state.value})"

    # ------------------------------------------------------------------
    # Codec
    # ------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        """Stored representation of the properties.

        Applies each field's transform to its value; ``None`` values and
        fields without a transform are copied as-is.
        """
        document = copy.deepcopy(self._props)
        for f in type(self).schema.transformed_fields():
            value = document.get(f.name)
            if value is not None:
                document[f.name] = f.transform.serialize(value)  # type: ignore[union-attr]
        return document

    @classmethod
    def deserialize(cls, document: Mapping[str, Any]) -> dict[str, Any]:
        """Application representation of a stored document, without metadata.

        Raises:
            CodecError: If a transform cannot decode the stored value
        """
        props = {k: copy.deepcopy(v) for k, v in document.items() if k not in SYSTEM_KEYS}
        for f in cls.schema.transformed_fields():
            value = props.get(f.name)
            if value is None:
                continue
            try:
                props[f.name] = f.transform.deserialize(value)  # type: ignore[union-attr]
            except Exception as e:
                raise CodecError(f.name, f"{type(e).__name__}: {e}") from e
        return props

    def _apply_document(self, document: Mapping[str, Any]) -> None:
        props = type(self).deserialize(document)
        self._props = props
        self._etag = document.get(ETAG_KEY)
        self._last_modified = document.get(TIMESTAMP_KEY)
        self._state = EntityState.PERSISTED

    def _rebind(self, other: Model) -> None:
        self._props = other._props
        self._etag = other._etag
        self._last_modified = other._last_modified
        self._state = other._state

    @classmethod
    def from_document(cls: type[M], document: Mapping[str, Any]) -> M:
        """Build an entity from a raw stored document.

        Properties the schema does not declare are kept in ``props``.

        Raises:
            CodecError: If a transform cannot decode the stored value
        """
        entity = cls.__new__(cls)
        entity._apply_document(document)
        if entity._etag is None:
            entity._state = EntityState.NEW
        return entity

    # ------------------------------------------------------------------
    # Lifecycle hooks (no-ops by default)
    # ------------------------------------------------------------------

    async def before_persist(self) -> None:
        """Called before every write, after before_create/before_update."""

    async def after_persist(self) -> None:
        """Called after every successful write, before after_create/after_update."""

    async def before_create(self) -> None:
        pass

    async def after_create(self) -> None:
        pass

    async def before_update(self) -> None:
        pass

    async def after_update(self) -> None:
        pass

    async def before_delete(self) -> None:
        pass

    async def after_delete(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Mutation engine
    # ------------------------------------------------------------------

    def _check_alive(self) -> None:
        if self._state is EntityState.DELETED:
            raise EntityDeletedError(self.id)

    def _store(self, store: DocumentStore | None) -> DocumentStore:
        return resolve_store(type(self).schema, store)

    def _validated_document(self, validate: bool | None) -> dict[str, Any]:
        document = self.serialize()
        if validate is None:
            validate = get_settings().validate_on_write
        if validate:
            validate_or_raise(type(self).schema, document)
        return document

    def validate(self) -> None:
        """Validate the serialized properties against the schema.

        Has no side effect on the entity.

        Raises:
            ValidationError: Listing every violated constraint
        """
        validate_or_raise(type(self).schema, self.serialize())

    def partition_key(self) -> Any:
        """Value of the partition key in this entity, in its stored form.

        The store partitions on serialized documents, so a transformed key
        field yields the transform's output (e.g. an ISO string for
        datetime_transform). Returns None for a schema without a partition key.

        Raises:
            ValueError: If the schema has a partition key and the value is missing
        """
        path = type(self).schema.partition_key_path
        if path is None:
            return None

        value = lookup_path(self.serialize(), path)
        if value is None:
            raise ValueError(
                f"Partition key was missing at path {path} in the model. "
                "A partition key must always be present."
            )
        return value

    async def create(
        self: M,
        *,
        force: bool = False,
        validate: bool | None = None,
        store: DocumentStore | None = None,
        **options: Any,
    ) -> M:
        """Create the document; fails if it already exists.

        Args:
            force: Overwrite an existing document (upsert) instead of failing
            validate: Validate before writing; None uses the configured default
            store: Store to use instead of the registered one
            **options: Forwarded verbatim to the store

        Returns:
            This entity, with fresh metadata

        Raises:
            ValidationError: If the document is invalid (nothing is sent)
            ConflictError: If a document with the same id exists and not force
        """
        self._check_alive()
        target = self._store(store)
        schema = type(self).schema

        await self.before_create()
        await self.before_persist()
        document = self._validated_document(validate)

        logger.debug(
            "Creating document",
            extra={"container_id": schema.container_id, "item_id": self.id, "force": force},
        )
        if force:
            response = await target.upsert(schema.container_id, document, options)
        else:
            response = await target.insert(schema.container_id, document, options)
        self._apply_document(response.resource)

        await self.after_persist()
        await self.after_create()
        return self

    async def update(
        self: M,
        *,
        force: bool = False,
        validate: bool | None = None,
        store: DocumentStore | None = None,
        **options: Any,
    ) -> M:
        """Persist changes, guarded by the held etag.

        Without an etag (and without force) the replace is unconditional.

        Args:
            force: Overwrite unconditionally (upsert), ignoring the etag
            validate: Validate before writing; None uses the configured default
            store: Store to use instead of the registered one
            **options: Forwarded verbatim to the store

        Returns:
            This entity, with fresh metadata

        Raises:
            ValidationError: If the document is invalid (nothing is sent)
            ConflictError: If another writer changed the document since it was read
            NotFoundError: If the document does not exist (and not force)
        """
        self._check_alive()
        target = self._store(store)
        schema = type(self).schema

        await self.before_update()
        await self.before_persist()
        document = self._validated_document(validate)

        logger.debug(
            "Updating document",
            extra={
                "container_id": schema.container_id,
                "item_id": self.id,
                "force": force,
                "conditional": not force and self._etag is not None,
            },
        )
        if force:
            response = await target.upsert(schema.container_id, document, options)
        else:
            response = await target.replace(
                schema.container_id, self.id, document, self._etag, options
            )
        self._apply_document(response.resource)

        await self.after_persist()
        await self.after_update()
        return self

    async def delete(
        self,
        *,
        force: bool = False,
        store: DocumentStore | None = None,
        **options: Any,
    ) -> None:
        """Delete the document, guarded by the held etag.

        Args:
            force: Delete unconditionally, even without an etag
            store: Store to use instead of the registered one
            **options: Forwarded verbatim to the store

        Raises:
            PreconditionMissingError: If no etag is held and not force (nothing is sent)
            ConflictError: If another writer changed the document since it was read
            NotFoundError: If the document does not exist
        """
        self._check_alive()
        if self._etag is None and not force:
            raise PreconditionMissingError(
                f"Cannot delete '{self.id}' without an etag; "
                "read it from the store first or pass force=True",
                item_id=self.id,
            )
        target = self._store(store)
        schema = type(self).schema
        partition_key = self.partition_key()

        await self.before_delete()
        logger.debug(
            "Deleting document",
            extra={"container_id": schema.container_id, "item_id": self.id, "force": force},
        )
        await target.delete(
            schema.container_id,
            partition_key,
            self.id,
            None if force else self._etag,
            options,
        )
        self._state = EntityState.DELETED
        await self.after_delete()

    async def save(self: M, **kwargs: Any) -> M:
        """Create the document if no etag is held, otherwise update it."""
        if self._etag is None:
            return await self.create(**kwargs)
        return await self.update(**kwargs)

    async def update_using(self: M, fn: Callable[[M], Any], **kwargs: Any) -> M:
        """Atomically update this entity with a transition function.

        See optidoc.atomic.update().
        """
        from . import atomic

        return await atomic.update(self, fn, **kwargs)

    # ------------------------------------------------------------------
    # Collection accessors
    # ------------------------------------------------------------------

    @classmethod
    def conflict_retries(cls) -> int:
        """Retry budget for atomic operations on this model."""
        if cls.default_conflict_retries is not None:
            return cls.default_conflict_retries
        return get_settings().default_conflict_retries

    @classmethod
    def partition(cls: type[M], partition_key: Any, store: DocumentStore | None = None) -> Partition[M]:
        """Accessor for documents in one partition."""
        return Partition(cls, partition_key, resolve_store(cls.schema, store))

    @classmethod
    def container(cls, store: DocumentStore | None = None) -> Container:
        """Provisioning facade for this model's container."""
        return Container(cls.schema, resolve_store(cls.schema, store))

    @classmethod
    def cross_partition_query(cls: type[M], store: DocumentStore | None = None) -> Query[M]:
        """Query builder spanning every partition."""
        return Query(cls, resolve_store(cls.schema, store))

    @classmethod
    async def create_or_update_using(
        cls: type[M],
        id: str,
        partition_key: Any,
        fn: Callable[[M | None], Any],
        *,
        store: DocumentStore | None = None,
        **kwargs: Any,
    ) -> M | None:
        """Atomically create or update a document with a transition function.

        See optidoc.atomic.create_or_update().
        """
        return await cls.partition(partition_key, store).create_or_update(id, fn, **kwargs)
