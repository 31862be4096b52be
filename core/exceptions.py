"""
Custom exceptions for the ingestion pipeline with structured error context.

Every exception carries a human-readable message, a context dictionary for
logging, and (optionally) the original exception that caused it.

Exception Hierarchy:
    IngestionException (base)
    ├── ExtractionError
    │   ├── TransportError              (retryable)
    │   ├── UpstreamError               (retryable for 429 and 5xx)
    │   ├── MalformedResponseError      (non-retryable)
    │   └── PaginationInvariantError    (non-retryable)
    ├── LoadError
    │   └── StorageError
    ├── CheckpointError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


CURSOR_EXPIRED_CODE = "CURSOR_EXPIRED"


class IngestionException(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (url, cursor, status, ...)
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
        self.timestamp = datetime.now(timezone.utc)

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
        """Convert exception to dictionary for logging."""
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

class RetryableError(IngestionException):
    """
    Errors that the fetch client recovers from locally:
    - Timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Server errors (HTTP 5xx)
    """


class NonRetryableError(IngestionException):
    """
    Errors that abort the run:
    - Upstream contract violations (bad payload shape)
    - Broken pagination (cursor missing or not advancing)
    """


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(IngestionException):
    """Base exception for failures while fetching from the upstream feed."""


class TransportError(RetryableError, ExtractionError):
    """
    Request never produced an HTTP response (timeout, connection reset).

    Raised to the caller only after the attempt ceiling is exhausted.
    """


class UpstreamError(ExtractionError):
    """
    Upstream answered with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the upstream
        response_body: Raw response body text
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: str = "",
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.response_body = response_body
        self.context["status_code"] = status_code
        if response_body:
            self.context["response_body"] = response_body[:500]

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500

    @property
    def is_cursor_expired(self) -> bool:
        """True when the upstream rejected the request cursor as expired."""
        return CURSOR_EXPIRED_CODE in (self.response_body or "")


class MalformedResponseError(NonRetryableError, ExtractionError):
    """
    Upstream payload could not be reconciled with the page contract.

    Context should include:
        - field_name: The offending field (if applicable)
        - event_index: Index of the offending event (if applicable)
    """


class PaginationInvariantError(NonRetryableError, ExtractionError):
    """A page reported more data without a usable, advancing cursor."""


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(IngestionException):
    """Base exception for data loading failures."""


class StorageError(LoadError):
    """
    A batch write failed and its transaction was rolled back.

    Context should include:
        - operation: The statement that failed (INSERT, UPDATE)
        - batch_size: Number of events in the batch
        - cursor: The cursor the batch would have committed
    """


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(IngestionException):
    """
    Checkpoint record could not be read or advanced.

    Context should include:
        - operation: read or advance
        - inserted_count: Count passed to the advance (if applicable)
    """
