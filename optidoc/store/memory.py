"""
In-memory document store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests
- Local development without a Cosmos DB account

Invariants:
    - All data is lost on process exit
    - Provides the same conditional-write semantics as production backends
    - Each operation is atomic with respect to other coroutines

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with DocumentStore protocol
    - Add features to help with testing scenarios

Query support is a small subset of the Cosmos DB SQL dialect::

    SELECT * FROM <alias> [WHERE <alias>.<path> = <@param | literal> [AND ...]]

Anything else raises ValueError.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..errors import ConflictError, ConflictReason, NotFoundError
from ..paths import lookup_path
from .base import (
    ETAG_KEY,
    TIMESTAMP_KEY,
    FeedPage,
    PartitionKey,
    RequestOptions,
    ResourceResponse,
    strip_system_keys,
)

if TYPE_CHECKING:
    from ..query import QuerySpec

logger = logging.getLogger(__name__)

REQUEST_CHARGE = 1.0

_SELECT_RE = re.compile(
    r"^\s*SELECT\s+(?:\*|(?P<projection>\w+)\.\*)\s+FROM\s+(?P<source>\w+)"
    r"(?:\s+(?!WHERE\b)(?:AS\s+)?(?P<alias>\w+))?"
    r"(?:\s+WHERE\s+(?P<where>.+?))?\s*;?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_AND_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)
_CONDITION_RE = re.compile(r"^(?P<alias>\w+)(?P<path>(?:\.\w+)+)\s*=\s*(?P<value>.+)$", re.DOTALL)


@dataclass
class InMemoryContainer:
    """In-memory container storage."""

    definition: Dict[str, Any]
    items: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)

    @property
    def partition_key_path(self) -> Optional[str]:
        paths = self.definition.get("partitionKey", {}).get("paths") or []
        return paths[0] if paths else None

    @property
    def unique_keys(self) -> List[List[str]]:
        policy = self.definition.get("uniqueKeyPolicy") or {}
        return [key["paths"] for key in policy.get("uniqueKeys", [])]

    def partition_of(self, document: Dict[str, Any]) -> PartitionKey:
        if self.partition_key_path is None:
            return None
        return lookup_path(document, self.partition_key_path)


def _partition_token(partition_key: PartitionKey) -> str:
    return json.dumps(partition_key, sort_keys=True)


def _check_has_id(document: Dict[str, Any]) -> None:
    if not isinstance(document.get("id"), str) or not document["id"]:
        raise ValueError("Document must have a non-empty string 'id'")


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    This provides a fully functional store that keeps every container in
    memory. Useful for:
    - Unit tests that need store behavior without external dependencies
    - Integration tests that verify concurrency handling
    - Local development and debugging

    Attributes:
        latency: Seconds to sleep before each operation, so concurrent
            callers interleave the way they would against a remote store
        operation_counts: Number of calls per operation name

    Thread safety:
        Uses an asyncio lock per operation. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.create_container_if_not_exists(schema.definition)
        >>> await store.insert("users", {"id": "1", "username": "connor"})
    """

    def __init__(self, latency: float = 0.0) -> None:
        """Initialize in-memory store.

        Args:
            latency: Seconds to sleep before each operation
        """
        self.latency = latency
        self.operation_counts: Counter[str] = Counter()
        self._containers: Dict[str, InMemoryContainer] = {}
        self._lock = asyncio.Lock()

    async def _enter(self, operation: str) -> None:
        self.operation_counts[operation] += 1
        if self.latency:
            await asyncio.sleep(self.latency)

    def _container(self, container_id: str) -> InMemoryContainer:
        container = self._containers.get(container_id)
        if container is None:
            raise NotFoundError(
                f"Container '{container_id}' does not exist",
                container_id=container_id,
            )
        return container

    def _response(
        self,
        document: Optional[Dict[str, Any]],
        status_code: int,
    ) -> ResourceResponse[Any]:
        return ResourceResponse(
            resource=copy.deepcopy(document),
            status_code=status_code,
            etag=document.get(ETAG_KEY) if document else None,
            request_charge=REQUEST_CHARGE,
            activity_id=str(uuid.uuid4()),
        )

    def _stamp(self, document: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(strip_system_keys(document))
        stored[ETAG_KEY] = f'"{uuid.uuid4()}"'
        stored[TIMESTAMP_KEY] = int(time.time())
        return stored

    def _check_unique(
        self,
        container: InMemoryContainer,
        document: Dict[str, Any],
        partition: str,
    ) -> None:
        for paths in container.unique_keys:
            values = [lookup_path(document, p) for p in paths]
            for (other_partition, other_id), other in container.items.items():
                if other_partition != partition or other_id == document["id"]:
                    continue
                if [lookup_path(other, p) for p in paths] == values:
                    raise ConflictError(
                        f"Unique key {paths} violated in '{container.definition['id']}'",
                        reason=ConflictReason.ALREADY_EXISTS,
                        item_id=document["id"],
                    )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def read(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Read a document by id."""
        await self._enter("read")
        async with self._lock:
            container = self._container(container_id)
            document = container.items.get((_partition_token(partition_key), item_id))
            if document is None:
                raise NotFoundError(
                    f"Document '{item_id}' not found in '{container_id}'",
                    container_id=container_id,
                    item_id=item_id,
                )
            return self._response(document, 200)

    async def insert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Insert a new document."""
        await self._enter("insert")
        _check_has_id(document)
        async with self._lock:
            container = self._container(container_id)
            partition = _partition_token(container.partition_of(document))
            key = (partition, document["id"])
            if key in container.items:
                raise ConflictError(
                    f"Document '{document['id']}' already exists in '{container_id}'",
                    reason=ConflictReason.ALREADY_EXISTS,
                    item_id=document["id"],
                )
            self._check_unique(container, document, partition)
            stored = self._stamp(document)
            container.items[key] = stored

        logger.debug(
            "Document inserted in memory store",
            extra={"container_id": container_id, "item_id": document["id"]},
        )
        return self._response(stored, 201)

    async def replace(
        self,
        container_id: str,
        item_id: str,
        document: Dict[str, Any],
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Replace an existing document, optionally guarded by an etag."""
        await self._enter("replace")
        async with self._lock:
            container = self._container(container_id)
            partition = _partition_token(container.partition_of(document))
            key = (partition, item_id)
            current = container.items.get(key)
            if current is None:
                raise NotFoundError(
                    f"Document '{item_id}' not found in '{container_id}'",
                    container_id=container_id,
                    item_id=item_id,
                )
            if if_match is not None and current[ETAG_KEY] != if_match:
                raise ConflictError(
                    f"Document '{item_id}' was modified concurrently",
                    reason=ConflictReason.PRECONDITION_FAILED,
                    item_id=item_id,
                )
            self._check_unique(container, document, partition)
            stored = self._stamp({**document, "id": item_id})
            container.items[key] = stored

        logger.debug(
            "Document replaced in memory store",
            extra={"container_id": container_id, "item_id": item_id, "conditional": if_match is not None},
        )
        return self._response(stored, 200)

    async def upsert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Create or overwrite a document unconditionally."""
        await self._enter("upsert")
        _check_has_id(document)
        async with self._lock:
            container = self._container(container_id)
            partition = _partition_token(container.partition_of(document))
            key = (partition, document["id"])
            existed = key in container.items
            self._check_unique(container, document, partition)
            stored = self._stamp(document)
            container.items[key] = stored

        logger.debug(
            "Document upserted in memory store",
            extra={"container_id": container_id, "item_id": document["id"], "existed": existed},
        )
        return self._response(stored, 200 if existed else 201)

    async def delete(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        """Delete a document, optionally guarded by an etag."""
        await self._enter("delete")
        async with self._lock:
            container = self._container(container_id)
            key = (_partition_token(partition_key), item_id)
            current = container.items.get(key)
            if current is None:
                raise NotFoundError(
                    f"Document '{item_id}' not found in '{container_id}'",
                    container_id=container_id,
                    item_id=item_id,
                )
            if if_match is not None and current[ETAG_KEY] != if_match:
                raise ConflictError(
                    f"Document '{item_id}' was modified concurrently",
                    reason=ConflictReason.PRECONDITION_FAILED,
                    item_id=item_id,
                )
            del container.items[key]

        logger.debug(
            "Document deleted from memory store",
            extra={"container_id": container_id, "item_id": item_id},
        )
        return self._response(None, 204)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_page(
        self,
        container_id: str,
        spec: QuerySpec,
        partition_key: Optional[PartitionKey] = None,
        continuation: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> FeedPage:
        """Fetch one page of query results.

        Pages are sized by ``options["max_item_count"]``; without it the
        whole result set is one page.
        """
        await self._enter("query")
        conditions = _compile_query(spec.query, _parameters(spec))
        options = options or {}
        page_size = options.get("max_item_count")
        offset = int(continuation) if continuation else 0

        async with self._lock:
            container = self._container(container_id)
            wanted = None if partition_key is None else _partition_token(partition_key)
            matches = [
                copy.deepcopy(document)
                for (partition, _), document in container.items.items()
                if (wanted is None or partition == wanted)
                and all(lookup_path(document, path) == value for path, value in conditions)
            ]

        end = len(matches) if page_size is None else offset + page_size
        next_token = str(end) if end < len(matches) else None
        return FeedPage(
            documents=matches[offset:end],
            continuation=next_token,
            request_charge=REQUEST_CHARGE,
            activity_id=str(uuid.uuid4()),
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def create_container_if_not_exists(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Create a container unless it exists."""
        await self._enter("create_container")
        async with self._lock:
            container_id = definition["id"]
            existing = self._containers.get(container_id)
            if existing is not None:
                return self._response(existing.definition, 200)
            container = InMemoryContainer(definition=copy.deepcopy(definition))
            self._containers[container_id] = container

        logger.debug("Container created in memory store", extra={"container_id": container_id})
        return self._response(container.definition, 201)

    async def replace_container(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        """Replace an existing container's definition, keeping its documents."""
        await self._enter("replace_container")
        async with self._lock:
            container = self._container(definition["id"])
            container.definition = copy.deepcopy(definition)
            return self._response(container.definition, 200)

    async def delete_container(
        self,
        container_id: str,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        """Delete a container and everything in it."""
        await self._enter("delete_container")
        async with self._lock:
            self._container(container_id)
            del self._containers[container_id]

        logger.debug("Container deleted from memory store", extra={"container_id": container_id})
        return self._response(None, 204)

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def get_document(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
    ) -> Optional[Dict[str, Any]]:
        """Get a stored document directly, bypassing counters and latency."""
        container = self._containers.get(container_id)
        if container is None:
            return None
        document = container.items.get((_partition_token(partition_key), item_id))
        return copy.deepcopy(document)

    def get_document_count(self, container_id: str) -> int:
        """Number of documents stored in a container."""
        container = self._containers.get(container_id)
        return len(container.items) if container else 0

    def has_container(self, container_id: str) -> bool:
        return container_id in self._containers

    def write_count(self) -> int:
        """Number of document write calls made so far."""
        return sum(self.operation_counts[op] for op in ("insert", "replace", "upsert", "delete"))

    def clear(self) -> None:
        """Drop all containers and reset counters."""
        self._containers.clear()
        self.operation_counts.clear()


def _parameters(spec: QuerySpec) -> Dict[str, Any]:
    return {p["name"]: p["value"] for p in spec.parameters}


def _parse_literal(text: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] == "'":
        return text[1:-1]
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Unsupported literal in query: {text!r}") from e


def _compile_query(query: str, parameters: Dict[str, Any]) -> List[Tuple[str, Any]]:
    """Parse the supported query subset into (path, expected value) pairs."""
    match = _SELECT_RE.match(query)
    if match is None:
        raise ValueError(f"Unsupported query for the in-memory store: {query!r}")

    alias = match.group("alias") or match.group("source")
    projection = match.group("projection")
    if projection is not None and projection != alias:
        raise ValueError(f"Unknown alias '{projection}' in query: {query!r}")

    where = match.group("where")
    if not where:
        return []

    conditions: List[Tuple[str, Any]] = []
    for clause in _AND_RE.split(where.strip()):
        condition = _CONDITION_RE.match(clause.strip())
        if condition is None or condition.group("alias") != alias:
            raise ValueError(f"Unsupported condition in query: {clause!r}")

        path = condition.group("path").replace(".", "/")
        raw_value = condition.group("value").strip()
        if raw_value.startswith("@"):
            if raw_value not in parameters:
                raise ValueError(f"Query parameter {raw_value} was not supplied")
            value = parameters[raw_value]
        else:
            value = _parse_literal(raw_value)
        conditions.append((path, value))
    return conditions
