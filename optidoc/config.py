"""
Configuration management for optidoc.

All configuration is done via environment variables. This module provides
typed settings classes with validation (pydantic-settings).

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages
    - The library never reads settings at import time

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Call get_settings.cache_clear() after changing the environment in tests
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    COSMOS = "cosmos"


class LogFormat(Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class OptidocSettings(BaseSettings):
    """Library-wide settings.

    Attributes:
        default_conflict_retries: Retry budget of atomic operations when the
            model does not set its own
        validate_on_write: Validate documents before create/update by default
        store_backend: Backend built by create_document_store()
        log_level: Root log level used by setup_logging()
        log_format: "text" or "json"
    """

    default_conflict_retries: int = Field(default=3, ge=0)
    validate_on_write: bool = Field(default=True)
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY)
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.TEXT)

    model_config = {"env_prefix": "OPTIDOC_"}


class CosmosSettings(BaseSettings):
    """Cosmos DB connection settings.

    Attributes:
        endpoint: Account endpoint, e.g. https://<account>.documents.azure.com:443/
        key: Account key (never logged)
        database: Database holding the containers
        connection_verify: Verify TLS certificates (disable for the local emulator)
    """

    endpoint: str = Field(default="https://localhost:8081/")
    key: SecretStr = Field(default=SecretStr(""))
    database: str = Field(default="optidoc")
    connection_verify: bool = Field(default=True)

    model_config = {"env_prefix": "OPTIDOC_COSMOS_"}


@lru_cache(maxsize=1)
def get_settings() -> OptidocSettings:
    """Get the cached library settings."""
    return OptidocSettings()
