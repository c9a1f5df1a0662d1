"""
Logging setup for applications using optidoc.

The library itself only creates module loggers and never configures
logging on import; applications call setup_logging() once at startup.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import LogFormat, OptidocSettings, get_settings


def setup_logging(settings: OptidocSettings | None = None) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Library settings, defaults to get_settings()
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == LogFormat.JSON:
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
