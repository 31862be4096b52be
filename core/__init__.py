"""
Core utilities and configuration for the event ingestion service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    time: Timezone-aware clock helper

Usage:
    from core.config import settings
    from core.database import create_engine
    from core.exceptions import TransportError, UpstreamError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "create_engine",
    "setup_logging",
    "utcnow",
    # Exceptions
    "IngestionException",
    "RetryableError",
    "NonRetryableError",
    "ExtractionError",
    "TransportError",
    "UpstreamError",
    "MalformedResponseError",
    "PaginationInvariantError",
    "LoadError",
    "StorageError",
    "CheckpointError",
]
