"""
Partition accessor for optidoc.

A Partition routes single-document operations to one partition key of a
model's container, and scopes queries to it.

Example:
    >>> users = User.partition("connor")
    >>> user = await users.maybe_find("connor")
    >>> await users.create_or_update("connor", bump_logins)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar

from . import atomic
from .errors import NotFoundError
from .query import Query
from .store.base import DocumentStore, PartitionKey, ResourceResponse

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")


class Partition(Generic[M]):
    """Operations on the documents of one partition.

    Attributes:
        model: Model class of the container
        partition_key: Partition key value
        store: Document store holding the container
    """

    def __init__(self, model: type[M], partition_key: PartitionKey, store: DocumentStore) -> None:
        self.model = model
        self.partition_key = partition_key
        self.store = store

    @property
    def container_id(self) -> str:
        return self.model.schema.container_id

    async def find_with_details(self, id: str, **options: Any) -> ResourceResponse[M]:
        """Look up a document by id, including the response metadata.

        Raises:
            NotFoundError: If the document does not exist
        """
        response = await self.store.read(self.container_id, self.partition_key, id, options)
        return response.map(self.model.from_document(response.resource))

    async def find(self, id: str, **options: Any) -> M:
        """Look up a document by id.

        Raises:
            NotFoundError: If the document does not exist
        """
        response = await self.find_with_details(id, **options)
        return response.resource

    async def maybe_find(self, id: str, **options: Any) -> Optional[M]:
        """Look up a document by id, returning None if it does not exist."""
        try:
            return await self.find(id, **options)
        except NotFoundError:
            return None

    async def delete(
        self,
        id: str,
        *,
        if_match: Optional[str] = None,
        **options: Any,
    ) -> ResourceResponse[None]:
        """Delete a document by id, optionally guarded by an etag."""
        logger.debug(
            "Deleting document by id",
            extra={"container_id": self.container_id, "item_id": id},
        )
        return await self.store.delete(self.container_id, self.partition_key, id, if_match, options)

    @property
    def query(self) -> Query[M]:
        """Query builder scoped to this partition."""
        return Query(self.model, self.store, partition_key=self.partition_key)

    async def create_or_update(
        self,
        id: str,
        fn: Callable[[Optional[M]], Any],
        **kwargs: Any,
    ) -> Optional[M]:
        """Atomically create or update a document; see atomic.create_or_update()."""
        return await atomic.create_or_update(self, id, fn, **kwargs)

    def __repr__(self) -> str:
        return f"Partition({self.container_id!r}, {self.partition_key!r})"
