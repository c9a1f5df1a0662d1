"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that all backends must
implement, along with the response types the mapping layer consumes.

Invariants:
    - Conditional writes are atomic per document; the store decides who wins
    - Every successful write returns the stored document with fresh ``_etag``
      and ``_ts`` metadata
    - Failures are reported with optidoc errors: NotFoundError, ConflictError
      (ALREADY_EXISTS or PRECONDITION_FAILED); anything else propagates
      unchanged

How to change safely:
    - Protocol changes require updating all implementations
    - ``options`` is always forwarded verbatim; never interpret it here
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import OptidocSettings
    from ..query import QuerySpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

ETAG_KEY = "_etag"
TIMESTAMP_KEY = "_ts"

# Properties the store maintains itself; never sent on write.
SYSTEM_KEYS = frozenset({"_etag", "_ts", "_rid", "_self", "_attachments", "_lsn"})

PartitionKey = Any
RequestOptions = Mapping[str, Any]


def strip_system_keys(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``document`` without store-maintained properties."""
    return {k: v for k, v in document.items() if k not in SYSTEM_KEYS}


@dataclass(frozen=True)
class ResourceResponse(Generic[T]):
    """Response to a single-document or container operation.

    Attributes:
        resource: The stored document (or mapped model)
        status_code: HTTP-style status reported by the store
        etag: Concurrency token of the returned resource
        request_charge: Cost of the request (request units)
        activity_id: Store-side correlation id
        headers: Raw response headers
    """

    resource: T
    status_code: int = 200
    etag: Optional[str] = None
    request_charge: float = 0.0
    activity_id: Optional[str] = None
    headers: Mapping[str, Any] = field(default_factory=dict)

    def map(self, resource: Any) -> ResourceResponse[Any]:
        """Same metadata, different resource."""
        return ResourceResponse(
            resource=resource,
            status_code=self.status_code,
            etag=self.etag,
            request_charge=self.request_charge,
            activity_id=self.activity_id,
            headers=self.headers,
        )


@dataclass(frozen=True)
class FeedPage:
    """One page of query results as returned by the store.

    Attributes:
        documents: Raw documents in this page
        continuation: Opaque token for the next page, None when exhausted
        request_charge: Cost of the request (request units)
        activity_id: Store-side correlation id
    """

    documents: List[Dict[str, Any]]
    continuation: Optional[str] = None
    request_charge: float = 0.0
    activity_id: Optional[str] = None


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    This defines the interface that all backends must implement.

    Concurrency contract:
        - replace()/delete() with ``if_match`` succeed only if the stored
          etag equals it; ``if_match=None`` makes them unconditional
        - insert() fails if a document with the same id exists in the partition
        - upsert() is unconditional

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.create_container_if_not_exists(schema.definition)
        >>> response = await store.insert("users", {"id": "1"})
        >>> response.etag
        '"4f1c..."'
    """

    @abstractmethod
    async def read(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Read a document by id.

        Raises:
            NotFoundError: If no such document exists in the partition
        """
        ...

    @abstractmethod
    async def insert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Insert a new document.

        Raises:
            ConflictError: ALREADY_EXISTS if the id (or a unique key) is taken
        """
        ...

    @abstractmethod
    async def replace(
        self,
        container_id: str,
        item_id: str,
        document: Dict[str, Any],
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Replace an existing document, optionally guarded by an etag.

        Raises:
            ConflictError: PRECONDITION_FAILED if ``if_match`` is stale
            NotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def upsert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Create or overwrite a document unconditionally."""
        ...

    @abstractmethod
    async def delete(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        """Delete a document, optionally guarded by an etag.

        Raises:
            ConflictError: PRECONDITION_FAILED if ``if_match`` is stale
            NotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def query_page(
        self,
        container_id: str,
        spec: QuerySpec,
        partition_key: Optional[PartitionKey] = None,
        continuation: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> FeedPage:
        """Fetch one page of query results.

        Args:
            container_id: Container to query
            spec: Parameterized query
            partition_key: Restrict to one partition; None queries across partitions
            continuation: Token from the previous page, None for the first page
            options: Feed options, e.g. ``max_item_count``
        """
        ...

    @abstractmethod
    async def create_container_if_not_exists(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Create a container from a schema definition unless it exists."""
        ...

    @abstractmethod
    async def replace_container(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Replace an existing container's definition.

        Raises:
            NotFoundError: If the container does not exist
        """
        ...

    @abstractmethod
    async def delete_container(
        self,
        container_id: str,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        """Delete a container and everything in it.

        Raises:
            NotFoundError: If the container does not exist
        """
        ...


def create_document_store(settings: "OptidocSettings") -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        settings: Library settings

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import CosmosSettings, StoreBackend
    from .cosmos import CosmosDocumentStore
    from .memory import InMemoryDocumentStore

    if settings.store_backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    elif settings.store_backend == StoreBackend.COSMOS:
        return CosmosDocumentStore.from_settings(CosmosSettings())
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
