"""
Exception hierarchy for the product import service.

Provides layered exception structure for domain-specific errors.
All exceptions include context for observability and debugging.

Dependencies: None (pure domain layer)
System role: Centralized exception handling across the application
"""

from typing import Any


class ProductImportException(Exception):
    """Base exception for all product import errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Initialize base exception with message and optional context.

        Args:
            message: Human-readable error message
            details: Optional dictionary of additional context for debugging
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation including details."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(ProductImportException):
    """Raised when submitted rows or request parameters fail validation."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field name that failed validation
            details: Additional context
        """
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details)


class JobNotFoundError(ProductImportException):
    """Raised when an import job cannot be found."""

    def __init__(self, job_id: str, details: dict[str, Any] | None = None) -> None:
        """
        Initialize job not found error.

        Args:
            job_id: ID of the missing job
            details: Additional context
        """
        details = details or {}
        details["job_id"] = job_id
        super().__init__(f"Import job not found: {job_id}", details)


class QueueOperationError(ProductImportException):
    """Raised when a queue operation fails at the store level."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize queue operation error.

        Args:
            message: Error message
            operation: Queue operation that failed (claim, append, requeue, ...)
            details: Additional context
        """
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details)


class EnrichmentError(ProductImportException):
    """
    Raised when an enrichment provider call fails.

    status_code mirrors the provider's HTTP status where one exists; the
    worker uses it together with retryable/error_code to decide between a
    scheduled retry and a terminal failure.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize enrichment error.

        Args:
            message: Error message
            status_code: Provider HTTP status, if any
            retryable: Whether a later attempt may succeed
            error_code: Machine-readable classification (http_429, timeout, ...)
            details: Additional context
        """
        self.status_code = status_code
        self.retryable = retryable
        self.error_code = error_code or (f"http_{status_code}" if status_code else "unknown")
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)


class ItemPayloadError(ProductImportException):
    """Raised when an item's product JSON is unusable (never retried)."""

    pass
