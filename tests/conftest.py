"""
Shared fixtures for the optidoc test suite.
"""

import pytest
import pytest_asyncio

from optidoc import InMemoryDocumentStore, get_settings, reset_registry

from .models import EVENT_SCHEMA, PAGE_VIEW_SCHEMA, POST_SCHEMA, USER_SCHEMA


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Isolate the global registry and settings between tests."""
    for name in (
        "OPTIDOC_DEFAULT_CONFLICT_RETRIES",
        "OPTIDOC_VALIDATE_ON_WRITE",
        "OPTIDOC_STORE_BACKEND",
        "OPTIDOC_LOG_LEVEL",
        "OPTIDOC_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_registry()
    get_settings.cache_clear()
    yield
    reset_registry()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def store():
    """In-memory store with every test container provisioned."""
    store = InMemoryDocumentStore()
    for schema in (USER_SCHEMA, PAGE_VIEW_SCHEMA, POST_SCHEMA, EVENT_SCHEMA):
        await store.create_container_if_not_exists(schema.definition)
    store.operation_counts.clear()
    return store


@pytest_asyncio.fixture
async def slow_store():
    """In-memory store that yields to other coroutines before each operation."""
    store = InMemoryDocumentStore(latency=0.001)
    for schema in (USER_SCHEMA, PAGE_VIEW_SCHEMA, POST_SCHEMA, EVENT_SCHEMA):
        await store.create_container_if_not_exists(schema.definition)
    store.operation_counts.clear()
    return store
