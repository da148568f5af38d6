"""
Core utilities and configuration for the catalog sync engine.

This package provides foundational components used throughout the sync run:

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session factory and connectivity probe
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import CatalogRequestError, NetworkError
    from core.logging import setup_logging

Example:
    setup_logging()

    async with async_session_maker() as session:
        ...
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "SyncException",
    "CatalogError",
    "CatalogRequestError",
    "CatalogResponseError",
    "CatalogLookupError",
    "ReconcileError",
    "RecordValidationError",
    "StoreError",
    "DatabaseError",
    "StoreUnavailableError",
    "ImageError",
    "ImageDownloadError",
    "ImageStorageError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "DatabaseConnectionError",
    "DeadlockError",
    "AuthenticationError",
    "ResourceNotFoundError",
]
