"""
Custom exceptions for the ingestion pipeline with structured error context.

Every exception carries a human-readable message, a context dictionary
(source, offset, status code, ...) and the original exception if one was
caught. The fetch cycle controller decides which of these abort a cycle:
only errors that would make the next resume point ambiguous do.

Exception Hierarchy:
    IngestionError (base)
    ├── FetchError
    │   ├── TransientFetchError (RetryableError)
    │   ├── UpstreamError
    │   └── DecodeError
    ├── RecordInvalid
    ├── SinkWriteError
    ├── CheckpointError
    │   ├── CheckpointReadError
    │   └── CheckpointWriteError
    ├── CycleInProgressError
    └── UnknownSourceError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionError(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, offset, etc.)
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
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


class RetryableError(IngestionError):
    """
    Mixin for errors a retry policy may retry.

    Only transient transport failures qualify; upstream rejections and
    undecodable payloads are left to the next invocation.
    """
    pass


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(IngestionError):
    """Base exception for page fetch failures."""
    pass


class TransientFetchError(RetryableError, FetchError):
    """
    Network-level failure reaching the upstream (timeout, refused, reset).

    Context should include:
        - url: The endpoint that failed
        - offset: Page offset being fetched
    """
    pass


class UpstreamError(FetchError):
    """
    Upstream answered with a non-2xx status.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code
        - response_body: Response body (truncated)
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
        self.context["response_body"] = response_body


class DecodeError(FetchError):
    """
    Upstream payload could not be parsed or has an unexpected shape.

    Context should include:
        - url: The endpoint that produced the payload
        - response_body: Response body (truncated)
    """
    pass


# ============================================================================
# Record Errors
# ============================================================================

class RecordInvalid(IngestionError):
    """
    A raw item cannot be mapped to a canonical record.

    Raised inside normalizers only; ``normalize()`` turns it into an
    ``InvalidRecord`` result.
    """

    def __init__(
        self,
        reason: str,
        natural_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(reason, context)
        self.reason = reason
        self.natural_id = natural_id


class SinkWriteError(IngestionError):
    """
    A single record failed to upsert.

    Context should include:
        - natural_id: Key of the record being written
        - table_name: Target table or collection
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(IngestionError):
    """
    Exception raised when checkpoint management fails.

    Context should include:
        - source_id: Source whose checkpoint failed
        - operation: Operation that failed (read, write, lease)
    """
    pass


class CheckpointReadError(CheckpointError):
    """Checkpoint could not be read; the cycle must not start."""
    pass


class CheckpointWriteError(CheckpointError):
    """Progress could not be persisted; the cycle must stop."""
    pass


# ============================================================================
# Trigger Errors
# ============================================================================

class CycleInProgressError(IngestionError):
    """Another invocation holds the lease for this source."""
    pass


class UnknownSourceError(IngestionError):
    """No feed source is registered under the requested id."""
    pass
