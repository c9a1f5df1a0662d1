"""
Container provisioning for optidoc.

The Container creates, replaces or deletes the store container described
by a schema. It is usually acquired from ``Model.container()``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .schema import Schema
from .store.base import DocumentStore, ResourceResponse

logger = logging.getLogger(__name__)


class Container:
    """Provisioning operations for one schema's container."""

    def __init__(self, schema: Schema, store: DocumentStore) -> None:
        self.schema = schema
        self.store = store

    async def create_if_not_exists(self, **options: Any) -> ResourceResponse[Dict[str, Any]]:
        """Create the container unless it already exists."""
        logger.info("Provisioning container", extra={"container_id": self.schema.container_id})
        return await self.store.create_container_if_not_exists(self.schema.definition, options)

    async def replace(self, **options: Any) -> ResourceResponse[Dict[str, Any]]:
        """Replace the container's definition with the schema's."""
        logger.info("Replacing container", extra={"container_id": self.schema.container_id})
        return await self.store.replace_container(self.schema.definition, options)

    async def delete(self, **options: Any) -> ResourceResponse[None]:
        """Delete the container and everything in it."""
        logger.info("Deleting container", extra={"container_id": self.schema.container_id})
        return await self.store.delete_container(self.schema.container_id, options)
