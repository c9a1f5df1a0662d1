"""
Store registry for optidoc.

This module maps collections to the document store that holds them:
- Binding a store to a specific container
- A default store for every other container
- Resolution with a clear error when nothing is bound

Every operation also accepts ``store=`` explicitly, which bypasses the
registry entirely. The process-wide registry exists for ergonomics and has
an explicit lifecycle: connect_models() at startup, reset_registry() at
teardown.

Example:
    >>> from optidoc import connect_models, InMemoryDocumentStore
    >>>
    >>> store = InMemoryDocumentStore()
    >>> connect_models(store)
    >>> await User.partition("1").find("1")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from .errors import StoreNotConfiguredError
from .schema import Schema
from .store.base import DocumentStore

logger = logging.getLogger(__name__)

# Global registry
_global_registry: StoreRegistry | None = None
_registry_lock = threading.Lock()


def _container_id(schema_or_id: Schema | str) -> str:
    if isinstance(schema_or_id, Schema):
        return schema_or_id.container_id
    return schema_or_id


class StoreRegistry:
    """Mapping of container id to document store.

    Example:
        >>> registry = StoreRegistry()
        >>> registry.bind(user_schema, cosmos_store)
        >>> registry.bind_default(memory_store)
        >>> registry.resolve(user_schema) is cosmos_store
        True
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._stores: dict[str, DocumentStore] = {}
        self._default: DocumentStore | None = None
        self._lock = threading.Lock()

    @property
    def default(self) -> DocumentStore | None:
        """Store used for containers without an explicit binding."""
        return self._default

    def bind(self, schema_or_id: Schema | str, store: DocumentStore) -> None:
        """Bind a store to one container.

        Args:
            schema_or_id: Schema or container id
            store: Store holding that container
        """
        container_id = _container_id(schema_or_id)
        with self._lock:
            self._stores[container_id] = store
        logger.debug("Store bound", extra={"container_id": container_id})

    def bind_default(self, store: DocumentStore) -> None:
        """Bind the store used for every container without its own binding."""
        with self._lock:
            self._default = store
        logger.debug("Default store bound")

    def unbind(self, schema_or_id: Schema | str) -> None:
        """Remove a container binding (no-op when absent)."""
        with self._lock:
            self._stores.pop(_container_id(schema_or_id), None)

    def resolve(self, schema_or_id: Schema | str) -> DocumentStore:
        """Get the store for a container.

        Raises:
            StoreNotConfiguredError: If neither a binding nor a default exists
        """
        container_id = _container_id(schema_or_id)
        with self._lock:
            store = self._stores.get(container_id, self._default)
        if store is None:
            raise StoreNotConfiguredError(container_id)
        return store

    def bindings(self) -> Iterator[tuple[str, DocumentStore]]:
        """Iterate over explicit container bindings."""
        with self._lock:
            items = list(self._stores.items())
        yield from items

    def clear(self) -> None:
        """Drop every binding, including the default."""
        with self._lock:
            self._stores.clear()
            self._default = None


def get_registry() -> StoreRegistry:
    """Get the global store registry."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = StoreRegistry()
        return _global_registry


def connect_models(store: DocumentStore, *schemas: Schema | str) -> None:
    """Associate a store with models in the global registry.

    Args:
        store: The document store
        *schemas: Containers to bind; when omitted, ``store`` becomes the default
    """
    registry = get_registry()
    if not schemas:
        registry.bind_default(store)
        return
    for schema in schemas:
        registry.bind(schema, store)


def resolve_store(schema: Schema, store: DocumentStore | None = None) -> DocumentStore:
    """Return ``store`` if given, else the globally bound store for ``schema``."""
    if store is not None:
        return store
    return get_registry().resolve(schema)


def reset_registry() -> None:
    """Reset the global registry (teardown, and between tests)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
