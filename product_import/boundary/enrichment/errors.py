"""
Provider error classification.

Maps transport and provider exceptions onto EnrichmentError so the worker
can decide between a scheduled retry and a terminal failure.

Dependencies: httpx, product_import.core.exceptions
System role: Retry classification for enrichment calls
"""

import asyncio

import httpx

from product_import.core.exceptions import EnrichmentError


def is_retryable_status(status_code: int | None) -> bool:
    """HTTP 429 and 5xx are transient."""
    if status_code is None:
        return False
    return status_code == 429 or 500 <= status_code <= 599


def error_code_for_status(status_code: int) -> str:
    if 500 <= status_code <= 599:
        return "http_5xx"
    return f"http_{status_code}"


def _status_of(error: BaseException) -> int | None:
    """Best-effort HTTP status from SDK exceptions (status_code or code attributes)."""
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def to_enrichment_error(error: BaseException, provider: str) -> EnrichmentError:
    """
    Wrap any provider failure in an EnrichmentError.

    Args:
        error: Exception raised by the provider call
        provider: Short provider name for the message (caption, embedding, vectorize)

    Returns:
        EnrichmentError with status_code, retryable and error_code populated
    """
    if isinstance(error, EnrichmentError):
        return error

    message = f"{provider} failed: {error}"
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return EnrichmentError(message, retryable=True, error_code="timeout")
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return EnrichmentError(
            message,
            status_code=status,
            retryable=is_retryable_status(status),
            error_code=error_code_for_status(status),
        )
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return EnrichmentError(message, retryable=True, error_code="network")

    status = _status_of(error)
    if status is not None:
        return EnrichmentError(
            message,
            status_code=status,
            retryable=is_retryable_status(status),
            error_code=error_code_for_status(status),
        )
    return EnrichmentError(message, retryable=False, error_code="unknown")
