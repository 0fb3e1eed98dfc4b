"""
Custom exceptions for the sync pipeline with structured error context.

Every error raised out of an orchestrator is one of these, so the caller
gets a single terminal error carrying enough context (endpoint, chunk
offset, batch index) to locate the failure.

Exception Hierarchy:
    SyncException (base)
    ├── ConfigurationError
    ├── ExtractionError
    │   ├── AuthError
    │   ├── TransientHttpError      (retryable)
    │   ├── PermanentHttpError
    │   └── ResponseShapeError
    ├── TransformationError
    │   └── ParseError
    ├── LoadError
    │   └── PersistenceError
    └── RetryableError / NonRetryableError (mixins)

Unresolved foreign keys are not errors; they are reported as skipped counts.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (tenant, endpoint, timestamp, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = dict(context or {})
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
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


class ConfigurationError(SyncException):
    """Tenant or application configuration is missing or invalid."""
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and dropped connections
    - Rate limiting (HTTP 429)
    - Server errors (HTTP 5xx)
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures
    - Client errors (HTTP 4xx)
    - Unexpected response shapes
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(SyncException):
    """Base exception for failures talking to a school-information API."""
    pass


class AuthError(NonRetryableError, ExtractionError):
    """
    Token acquisition failed, or a request was still rejected with 401
    after one forced token refresh.

    Context should include:
        - tenant_id: Tenant whose credentials failed
        - url: Token or resource URL
        - status_code: HTTP status code (if applicable)
    """
    pass


class TransientHttpError(RetryableError, ExtractionError):
    """
    Network failure, timeout, 429 or 5xx response.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class PermanentHttpError(NonRetryableError, ExtractionError):
    """
    A 4xx response other than 401.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code
        - response_body: Response body (truncated)
    """
    pass


class ResponseShapeError(NonRetryableError, ExtractionError):
    """
    A response envelope did not match the shape expected for its endpoint.

    Context should include:
        - endpoint: Endpoint name
        - keys: Top-level keys that were present
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(SyncException):
    """Base exception for payload decoding and normalization failures."""
    pass


class ParseError(NonRetryableError, TransformationError):
    """
    A fetched chunk could not be decoded by any strategy in the chain.

    Context should include:
        - endpoint: Export endpoint name
        - offset: Window offset of the failing chunk
        - strategies: Strategy name -> failure reason
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncException):
    """Base exception for store write failures."""
    pass


class PersistenceError(NonRetryableError, LoadError):
    """
    A write transaction failed and was rolled back.

    Context should include:
        - table_name: Target table
        - batch_index: Zero-based index of the failing batch
        - batch_count: Total batches in the transaction
    """
    pass
