"""
Queries for optidoc.

This module provides:
- sql(): build a parameterized query from a template
- Query: run queries against a model's container, optionally within one
  partition
- QueryIterator: forward-only, resumable cursor over result pages

Use ``$self`` in a query to refer to the model's container.

Example:
    >>> spec = sql("SELECT * FROM $self u WHERE u.username = {}", name)
    >>> async for page in User.cross_partition_query().run(spec):
    ...     for user in page.resources:
    ...         print(user["username"])
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    TypeVar,
    Union,
)

from .store.base import DocumentStore, PartitionKey

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound="Model")

PLACEHOLDER = "{}"
SELF_TOKEN_RE = re.compile(r"\$self\b")


@dataclass(frozen=True)
class QuerySpec:
    """A query string plus its named parameters.

    Attributes:
        query: Query text referencing parameters as ``@name``
        parameters: ``{"name": "@name", "value": ...}`` entries
    """

    query: str
    parameters: tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the store's query-spec shape."""
        return {"query": self.query, "parameters": [dict(p) for p in self.parameters]}


def _same_value(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def sql(template: str, *params: Any) -> QuerySpec:
    """Build a parameterized query.

    Each ``{}`` in the template is replaced with ``@argN``, where N is the
    position of the first parameter equal to the value; equal values share
    one parameter.

    Raises:
        ValueError: If the number of placeholders and parameters differ

    Example:
        >>> sql("SELECT * FROM c WHERE c.a = {} OR c.b = {}", "x", "x").to_dict()
        {'query': 'SELECT * FROM c WHERE c.a = @arg0 OR c.b = @arg0',
         'parameters': [{'name': '@arg0', 'value': 'x'}]}
    """
    parts = template.split(PLACEHOLDER)
    if len(parts) - 1 != len(params):
        raise ValueError(
            f"Query has {len(parts) - 1} placeholder(s) but {len(params)} parameter(s)"
        )

    names: List[tuple[Any, str]] = []
    query = parts[0]
    for i, value in enumerate(params):
        name = next((n for v, n in names if _same_value(v, value)), None)
        if name is None:
            name = f"@arg{i}"
            names.append((value, name))
        query += name + parts[i + 1]

    return QuerySpec(query, tuple({"name": n, "value": v} for v, n in names))


@dataclass(frozen=True)
class FeedResponse(Generic[T]):
    """One page of query results.

    Attributes:
        resources: Items in this page
        continuation_token: Token to resume after this page, None when done
        has_more_results: Whether more pages remain
        request_charge: Cost of the request(s) (request units)
        activity_id: Store-side correlation id
    """

    resources: List[T] = field(default_factory=list)
    continuation_token: Optional[str] = None
    has_more_results: bool = False
    request_charge: float = 0.0
    activity_id: Optional[str] = None


class QueryIterator(Generic[T]):
    """Forward-only, resumable cursor over query result pages.

    Example:
        >>> it = User.partition("p").query.run("SELECT * FROM c", max_item_count=10)
        >>> while it.has_more_results():
        ...     page = await it.fetch_next()
    """

    def __init__(
        self,
        store: DocumentStore,
        container_id: str,
        spec: QuerySpec,
        partition_key: Optional[PartitionKey] = None,
        options: Optional[Dict[str, Any]] = None,
        map_fn: Optional[Callable[[Dict[str, Any]], T]] = None,
    ) -> None:
        self._store = store
        self._container_id = container_id
        self._spec = spec
        self._partition_key = partition_key
        self._options = dict(options or {})
        self._map_fn = map_fn
        self._continuation: Optional[str] = None
        self._started = False

    def has_more_results(self) -> bool:
        """Whether fetch_next() may return more results."""
        return not self._started or self._continuation is not None

    async def fetch_next(self) -> FeedResponse[T]:
        """Fetch the next page; an empty page once the cursor is exhausted."""
        if not self.has_more_results():
            return FeedResponse()

        page = await self._store.query_page(
            self._container_id,
            self._spec,
            self._partition_key,
            self._continuation,
            self._options,
        )
        self._started = True
        self._continuation = page.continuation

        logger.debug(
            "Fetched query page",
            extra={
                "container_id": self._container_id,
                "count": len(page.documents),
                "has_more": page.continuation is not None,
            },
        )
        resources: List[Any] = page.documents
        if self._map_fn is not None:
            resources = [self._map_fn(d) for d in page.documents]
        return FeedResponse(
            resources=resources,
            continuation_token=page.continuation,
            has_more_results=page.continuation is not None,
            request_charge=page.request_charge,
            activity_id=page.activity_id,
        )

    async def fetch_all(self) -> FeedResponse[T]:
        """Fetch every remaining page into one response."""
        resources: List[T] = []
        charge = 0.0
        activity_id = None
        while self.has_more_results():
            page = await self.fetch_next()
            resources.extend(page.resources)
            charge += page.request_charge
            activity_id = page.activity_id or activity_id
        return FeedResponse(resources=resources, request_charge=charge, activity_id=activity_id)

    def reset(self) -> None:
        """Start over from the first page."""
        self._continuation = None
        self._started = False

    async def __aiter__(self) -> AsyncIterator[FeedResponse[T]]:
        while self.has_more_results():
            yield await self.fetch_next()


class Query(Generic[M]):
    """Runs queries in a model's container.

    Acquire it from ``Partition.query`` or ``Model.cross_partition_query()``.

    Attributes:
        model: Model class of the container
        store: Document store holding the container
        partition_key: Partition to scope to; None queries every partition
    """

    def __init__(
        self,
        model: type[M],
        store: DocumentStore,
        partition_key: Optional[PartitionKey] = None,
    ) -> None:
        self.model = model
        self.store = store
        self.partition_key = partition_key

    @property
    def container_id(self) -> str:
        return self.model.schema.container_id

    def prepare(self, spec: Union[QuerySpec, str]) -> QuerySpec:
        """Normalize a spec and substitute ``$self`` with the container id."""
        if isinstance(spec, str):
            spec = QuerySpec(spec)
        return QuerySpec(SELF_TOKEN_RE.sub(self.container_id, spec.query), spec.parameters)

    def raw(self, spec: Union[QuerySpec, str], **options: Any) -> QueryIterator[Dict[str, Any]]:
        """Run a query, returning raw stored documents.

        Args:
            spec: QuerySpec from sql(), or a plain query string
            **options: Feed options forwarded to the store, e.g. max_item_count
        """
        return QueryIterator(
            self.store,
            self.container_id,
            self.prepare(spec),
            self.partition_key,
            options,
        )

    def run(self, spec: Union[QuerySpec, str], **options: Any) -> QueryIterator[M]:
        """Run a query, returning models decoded through the field transforms."""
        return QueryIterator(
            self.store,
            self.container_id,
            self.prepare(spec),
            self.partition_key,
            options,
            map_fn=self.model.from_document,
        )
