"""
Document store abstraction for optidoc.

This module provides a pluggable store backend interface supporting:
- Azure Cosmos DB (production)
- In-memory (for testing and local development)

The store, not this library, is the source of truth for which concurrent
write wins.

Invariants:
    - Conditional writes are atomic per document
    - Successful writes return fresh _etag and _ts metadata
    - Store failures surface as optidoc errors or propagate unchanged

How to change safely:
    - New backends must implement DocumentStore protocol
    - Run the integration tests against every backend
"""

from .base import (
    DocumentStore,
    FeedPage,
    ResourceResponse,
    create_document_store,
    strip_system_keys,
)
from .cosmos import COSMOS_AVAILABLE, CosmosDocumentStore
from .memory import InMemoryDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "FeedPage",
    "ResourceResponse",
    "create_document_store",
    "strip_system_keys",
    # Implementations
    "CosmosDocumentStore",
    "COSMOS_AVAILABLE",
    "InMemoryDocumentStore",
]
