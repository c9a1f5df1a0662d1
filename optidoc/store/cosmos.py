"""
Azure Cosmos DB document store implementation.

This module provides the production backend over the asynchronous
``azure-cosmos`` client (``azure.cosmos.aio``).

Invariants:
    - If-Match is sent as etag + MatchConditions.IfNotModified
    - Not-found, already-exists and precondition-failed responses are
      translated to optidoc errors; everything else propagates unchanged
    - Request options are forwarded verbatim as keyword arguments

How to change safely:
    - Test against the Cosmos DB emulator before deploying
    - Keep error translation in _translate_errors() only
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from ..errors import ConflictError, ConflictReason, NotFoundError
from .base import (
    ETAG_KEY,
    FeedPage,
    PartitionKey,
    RequestOptions,
    ResourceResponse,
    strip_system_keys,
)

if TYPE_CHECKING:
    from ..config import CosmosSettings
    from ..query import QuerySpec

logger = logging.getLogger(__name__)

# Try to import azure-cosmos, provide helpful message if not installed
try:
    from azure.core import MatchConditions
    from azure.cosmos import PartitionKey as CosmosPartitionKey
    from azure.cosmos import ThroughputProperties
    from azure.cosmos.aio import CosmosClient
    from azure.cosmos.exceptions import (
        CosmosAccessConditionFailedError,
        CosmosResourceExistsError,
        CosmosResourceNotFoundError,
    )

    COSMOS_AVAILABLE = True
except ImportError:
    COSMOS_AVAILABLE = False
    CosmosClient = None

_HEADER_ETAG = "etag"
_HEADER_CHARGE = "x-ms-request-charge"
_HEADER_ACTIVITY = "x-ms-activity-id"


@contextmanager
def _translate_errors(container_id: str, item_id: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except CosmosResourceNotFoundError as e:
        raise NotFoundError(
            f"'{item_id or container_id}' not found in '{container_id}'",
            container_id=container_id,
            item_id=item_id,
        ) from e
    except CosmosResourceExistsError as e:
        raise ConflictError(
            f"'{item_id or container_id}' already exists in '{container_id}'",
            reason=ConflictReason.ALREADY_EXISTS,
            item_id=item_id,
        ) from e
    except CosmosAccessConditionFailedError as e:
        raise ConflictError(
            f"'{item_id}' was modified concurrently in '{container_id}'",
            reason=ConflictReason.PRECONDITION_FAILED,
            item_id=item_id,
        ) from e


def _match_kwargs(if_match: Optional[str]) -> Dict[str, Any]:
    if if_match is None:
        return {}
    return {"etag": if_match, "match_condition": MatchConditions.IfNotModified}


def _response_headers(result: Any, container: Any) -> Dict[str, Any]:
    getter = getattr(result, "get_response_headers", None)
    if callable(getter):
        return dict(getter())
    connection = getattr(container, "client_connection", None)
    return dict(getattr(connection, "last_response_headers", None) or {})


def _response(
    resource: Any,
    headers: Dict[str, Any],
    status_code: int,
) -> ResourceResponse[Any]:
    etag = resource.get(ETAG_KEY) if isinstance(resource, dict) else headers.get(_HEADER_ETAG)
    return ResourceResponse(
        resource=dict(resource) if isinstance(resource, dict) else resource,
        status_code=status_code,
        etag=etag,
        request_charge=float(headers.get(_HEADER_CHARGE, 0.0) or 0.0),
        activity_id=headers.get(_HEADER_ACTIVITY),
        headers=headers,
    )


def container_kwargs(definition: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a schema definition into create_container keyword arguments."""
    kwargs: Dict[str, Any] = {"id": definition["id"]}

    partition_key = definition.get("partitionKey")
    if partition_key:
        kwargs["partition_key"] = CosmosPartitionKey(
            path=partition_key["paths"][0],
            kind="Hash",
            version=partition_key.get("version") or 1,
        )
    if "defaultTtl" in definition:
        kwargs["default_ttl"] = definition["defaultTtl"]
    if "indexingPolicy" in definition:
        kwargs["indexing_policy"] = definition["indexingPolicy"]
    if "uniqueKeyPolicy" in definition:
        kwargs["unique_key_policy"] = definition["uniqueKeyPolicy"]
    if "conflictResolutionPolicy" in definition:
        kwargs["conflict_resolution_policy"] = definition["conflictResolutionPolicy"]

    if "maxThroughput" in definition:
        kwargs["offer_throughput"] = ThroughputProperties(
            auto_scale_max_throughput=definition["maxThroughput"],
            auto_scale_increment_percent=(
                definition.get("autoUpgradePolicy", {})
                .get("throughputPolicy", {})
                .get("incrementPercent")
            ),
        )
    elif "throughput" in definition:
        kwargs["offer_throughput"] = definition["throughput"]

    if "geospatialConfig" in definition:
        logger.warning(
            "geospatialConfig is not supported by the Python Cosmos DB client; ignoring it",
            extra={"container_id": definition["id"]},
        )
    return kwargs


class CosmosDocumentStore:
    """Cosmos DB implementation of DocumentStore protocol.

    Uses azure-cosmos' asyncio client. Construct from settings, or wrap an
    existing DatabaseProxy.

    Example:
        >>> store = CosmosDocumentStore.from_settings(CosmosSettings())
        >>> connect_models(store)
        >>> ...
        >>> await store.close()
    """

    def __init__(self, database: Any, client: Any = None) -> None:
        """Initialize the store.

        Args:
            database: azure.cosmos.aio DatabaseProxy
            client: Owning CosmosClient, closed by close()

        Raises:
            ImportError: If azure-cosmos is not installed
        """
        if not COSMOS_AVAILABLE:
            raise ImportError(
                "azure-cosmos is required for the Cosmos DB backend. "
                "Install with: pip install 'optidoc[cosmos]'"
            )
        self._database = database
        self._client = client
        self._containers: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings: CosmosSettings) -> CosmosDocumentStore:
        """Create a client and store from connection settings."""
        if not COSMOS_AVAILABLE:
            raise ImportError(
                "azure-cosmos is required for the Cosmos DB backend. "
                "Install with: pip install 'optidoc[cosmos]'"
            )
        client = CosmosClient(
            settings.endpoint,
            credential=settings.key.get_secret_value(),
            connection_verify=settings.connection_verify,
        )
        logger.info(
            "Cosmos DB store configured",
            extra={"endpoint": settings.endpoint, "database": settings.database},
        )
        return cls(client.get_database_client(settings.database), client)

    async def close(self) -> None:
        """Close the owned client, if any."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> CosmosDocumentStore:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _container(self, container_id: str) -> Any:
        container = self._containers.get(container_id)
        if container is None:
            container = self._database.get_container_client(container_id)
            self._containers[container_id] = container
        return container

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
        container = self._container(container_id)
        with _translate_errors(container_id, item_id):
            result = await container.read_item(
                item=item_id, partition_key=partition_key, **(options or {})
            )
        return _response(result, _response_headers(result, container), 200)

    async def insert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        container = self._container(container_id)
        with _translate_errors(container_id, document.get("id")):
            result = await container.create_item(
                body=strip_system_keys(document), **(options or {})
            )
        return _response(result, _response_headers(result, container), 201)

    async def replace(
        self,
        container_id: str,
        item_id: str,
        document: Dict[str, Any],
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        container = self._container(container_id)
        with _translate_errors(container_id, item_id):
            result = await container.replace_item(
                item=item_id,
                body=strip_system_keys(document),
                **_match_kwargs(if_match),
                **(options or {}),
            )
        return _response(result, _response_headers(result, container), 200)

    async def upsert(
        self,
        container_id: str,
        document: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        container = self._container(container_id)
        with _translate_errors(container_id, document.get("id")):
            result = await container.upsert_item(
                body=strip_system_keys(document), **(options or {})
            )
        return _response(result, _response_headers(result, container), 200)

    async def delete(
        self,
        container_id: str,
        partition_key: PartitionKey,
        item_id: str,
        if_match: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        container = self._container(container_id)
        with _translate_errors(container_id, item_id):
            await container.delete_item(
                item=item_id,
                partition_key=partition_key,
                **_match_kwargs(if_match),
                **(options or {}),
            )
        return _response(None, _response_headers(None, container), 204)

    async def query_page(
        self,
        container_id: str,
        spec: QuerySpec,
        partition_key: Optional[PartitionKey] = None,
        continuation: Optional[str] = None,
        options: Optional[RequestOptions] = None,
    ) -> FeedPage:
        container = self._container(container_id)
        kwargs: Dict[str, Any] = dict(options or {})
        if partition_key is not None:
            kwargs["partition_key"] = partition_key

        with _translate_errors(container_id):
            pager = container.query_items(
                query=spec.query,
                parameters=[dict(p) for p in spec.parameters],
                **kwargs,
            ).by_page(continuation)
            try:
                page = await pager.__anext__()
                documents = [dict(d) async for d in page]
            except StopAsyncIteration:
                documents = []

        headers = _response_headers(None, container)
        return FeedPage(
            documents=documents,
            continuation=pager.continuation_token,
            request_charge=float(headers.get(_HEADER_CHARGE, 0.0) or 0.0),
            activity_id=headers.get(_HEADER_ACTIVITY),
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def create_container_if_not_exists(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        kwargs = container_kwargs(definition)
        with _translate_errors(definition["id"]):
            proxy = await self._database.create_container_if_not_exists(
                **kwargs, **(options or {})
            )
            properties = await proxy.read()
        self._containers[definition["id"]] = proxy
        return _response(properties, {}, 200)

    async def replace_container(
        self,
        definition: Dict[str, Any],
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[Dict[str, Any]]:
        kwargs = container_kwargs(definition)
        container_id = kwargs.pop("id")
        kwargs.pop("unique_key_policy", None)
        kwargs.pop("offer_throughput", None)
        with _translate_errors(container_id):
            proxy = await self._database.replace_container(
                container_id, **kwargs, **(options or {})
            )
            properties = await proxy.read()
        self._containers[container_id] = proxy
        return _response(properties, {}, 200)

    async def delete_container(
        self,
        container_id: str,
        options: Optional[RequestOptions] = None,
    ) -> ResourceResponse[None]:
        with _translate_errors(container_id):
            await self._database.delete_container(container_id, **(options or {}))
        self._containers.pop(container_id, None)
        return _response(None, {}, 204)
