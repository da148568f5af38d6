"""
Custom exceptions for the catalog sync engine with structured error context.

Every exception carries a context dictionary so the orchestrator can log
and persist failures without losing the record or request that caused them.
The orchestrator uses the Retryable/NonRetryable mixins to decide whether
a record is attempted again.

Exception Hierarchy:
    SyncException (base)
    ├── CatalogError
    │   ├── CatalogRequestError
    │   ├── CatalogResponseError
    │   └── CatalogLookupError
    ├── ReconcileError
    │   └── RecordValidationError
    ├── StoreError
    │   ├── DatabaseError
    │   └── StoreUnavailableError
    ├── ImageError
    │   ├── ImageDownloadError
    │   └── ImageStorageError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (page, external_id, url, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Database deadlocks
    - Service unavailable (HTTP 503)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Records missing their identifier
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Catalog (external feed) Errors
# ============================================================================

class CatalogError(SyncException):
    """Base exception for failures talking to the external catalog feed."""
    pass


class CatalogRequestError(CatalogError):
    """
    Exception raised when a catalog page or lookup request fails.

    Context should include:
        - url: The endpoint that failed
        - page: Page number requested
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of retries attempted
    """
    pass


class CatalogResponseError(CatalogError):
    """
    Exception raised when the feed answers with a body we cannot use.

    Context should include:
        - page: Page number requested
        - reason: What was wrong with the payload
    """
    pass


class CatalogLookupError(CatalogError):
    """
    Exception raised when a point lookup by natural key cannot complete.

    Context should include:
        - key_type: license_plate or origin
        - key: The value searched for
        - pages_scanned: Pages read before giving up
    """
    pass


# ============================================================================
# Reconcile Errors
# ============================================================================

class ReconcileError(SyncException):
    """Base exception for per-record reconciliation failures."""
    pass


class RecordValidationError(NonRetryableError, ReconcileError):
    """
    Exception raised when an external record lacks what the store requires.

    Context should include:
        - external_id: Identifier of the record (if any)
        - field_name: Field that failed validation
    """
    pass


# ============================================================================
# Store Errors
# ============================================================================

class StoreError(SyncException):
    """Base exception for local store failures."""
    pass


class DatabaseError(StoreError):
    """
    Exception raised when a database statement fails.

    Context should include:
        - operation: What the store was doing
        - external_id: Record being written (if applicable)
    """
    pass


class StoreUnavailableError(StoreError):
    """The local store cannot be reached at all. Fatal for a sync run."""
    pass


# ============================================================================
# Image Errors
# ============================================================================

class ImageError(SyncException):
    """Base exception for image pipeline failures."""
    pass


class ImageDownloadError(ImageError):
    """
    Exception raised when an image cannot be fetched.

    Context should include:
        - url: Image URL
        - vehicle_id: Owning vehicle
        - status_code: HTTP status code (if applicable)
    """
    pass


class ImageStorageError(ImageError):
    """Exception raised when a downloaded image cannot be written to disk."""
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class NetworkError(RetryableError, CatalogRequestError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, CatalogRequestError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class DatabaseConnectionError(RetryableError, DatabaseError):
    """Database connection errors that should be retried."""
    pass


class DeadlockError(RetryableError, DatabaseError):
    """Database deadlock / serialization errors that should be retried."""
    pass


# ============================================================================
# Specific Non-Retryable Errors
# ============================================================================

class AuthenticationError(NonRetryableError, CatalogRequestError):
    """Authentication failures (HTTP 401, 403) or a missing API key."""
    pass


class ResourceNotFoundError(NonRetryableError, CatalogRequestError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass
