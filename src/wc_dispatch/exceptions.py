"""Typed exceptions for the window-cleaning dispatch back office."""

from __future__ import annotations

from typing import Any


class APIRetryExhausted(RuntimeError):
    """Raised when API retry attempts are exhausted.

    A transient API error (rate limit or server error) persisted across
    all retry attempts.
    """

    def __init__(
        self,
        operation: str,
        attempts: int,
        status_code: int | None = None,
        reason: str | None = None,
        message: str | None = None,
        cause: Exception | None = None,
    ):
        """Initialize APIRetryExhausted exception.

        Args:
            operation: Operation name that failed
            attempts: Number of attempts made
            status_code: HTTP status code if known
            reason: Rate limit reason (e.g., 'rateLimitExceeded') for 403 errors
            message: Optional custom error message
            cause: Original exception that caused the failure
        """
        self.operation = operation
        self.attempts = attempts
        self.status_code = status_code
        self.reason = reason
        self.message = message or "API retry attempts exhausted"
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        parts = [f"APIRetryExhausted: {self.message}"]
        parts.append(f"operation={self.operation}")
        parts.append(f"attempts={self.attempts}")
        if self.status_code is not None:
            parts.append(f"status_code={self.status_code}")
        if self.reason is not None:
            parts.append(f"reason={self.reason}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception to dictionary for logging."""
        result: dict[str, Any] = {
            "error_type": "APIRetryExhausted",
            "operation": self.operation,
            "attempts": self.attempts,
            "message": self.message,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.reason is not None:
            result["reason"] = self.reason
        if self.cause is not None:
            result["cause"] = str(self.cause)
            result["cause_type"] = type(self.cause).__name__
        return result


class ExtractionUnavailable(RuntimeError):
    """Raised when the completion service yields no usable structured result.

    The LLM extractor never returns a partial record: a missing tool call,
    empty arguments, or arguments that are not a JSON object all end here.
    Callers surface ``str(exc)`` to the operator; retrying is their call.
    """

    def __init__(self, message: str, *, model: str | None = None, detail: str | None = None):
        self.message = message
        self.model = model
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error_type": "ExtractionUnavailable",
            "message": self.message,
        }
        if self.model is not None:
            result["model"] = self.model
        if self.detail is not None:
            result["detail"] = self.detail
        return result


class ValidationError(ValueError):
    """Operator input rejected before anything is written."""

    def __init__(self, message: str, *, field: str | None = None):
        self.message = message
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error_type": "ValidationError", "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        return result


class RecordNotFound(LookupError):
    """No row with the requested id in a datastore table."""

    def __init__(self, table: str, record_id: str, message: str | None = None):
        self.table = table
        self.record_id = record_id
        self.message = message or f"{table} record not found: {record_id}"
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": "RecordNotFound",
            "table": self.table,
            "record_id": self.record_id,
            "message": self.message,
        }
