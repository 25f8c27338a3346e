"""
Unit tests for error classification and retry backoff.

System role: Verification of the worker's retry decisions
"""

import asyncio

import httpx
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from product_import.application.services.import_runner import calc_retry_after_seconds, classify_retry
from product_import.boundary.enrichment.errors import (
    error_code_for_status,
    is_retryable_status,
    to_enrichment_error,
)
from product_import.core.exceptions import EnrichmentError, ItemPayloadError, QueueOperationError


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://vectorize.test/embed")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class SdkError(Exception):
    """Provider SDK exception exposing an HTTP status as `code`."""

    def __init__(self, code: int) -> None:
        super().__init__(f"sdk error {code}")
        self.code = code


class TestStatusHelpers:
    """Test suite for status classification helpers."""

    @pytest.mark.parametrize("status, expected", [(429, True), (500, True), (503, True), (400, False), (404, False), (None, False)])
    def test_is_retryable_status(self, status, expected) -> None:
        assert is_retryable_status(status) is expected

    def test_error_code_for_status_should_group_server_errors(self) -> None:
        assert error_code_for_status(502) == "http_5xx"
        assert error_code_for_status(429) == "http_429"


class TestToEnrichmentError:
    """Test suite for to_enrichment_error()."""

    def test_timeout_should_be_retryable(self) -> None:
        error = to_enrichment_error(httpx.ReadTimeout("slow"), "caption")

        assert (error.retryable, error.error_code) == (True, "timeout")

    def test_connect_error_should_be_retryable_network(self) -> None:
        error = to_enrichment_error(httpx.ConnectError("refused"), "caption")

        assert (error.retryable, error.error_code) == (True, "network")

    @pytest.mark.parametrize("status, retryable", [(429, True), (503, True), (400, False)])
    def test_http_status_error_should_follow_status(self, status, retryable) -> None:
        error = to_enrichment_error(_status_error(status), "vectorize")

        assert error.status_code == status
        assert error.retryable is retryable

    def test_sdk_error_code_should_be_used(self) -> None:
        error = to_enrichment_error(SdkError(429), "embedding")

        assert (error.status_code, error.retryable, error.error_code) == (429, True, "http_429")

    def test_unknown_error_should_not_be_retryable(self) -> None:
        error = to_enrichment_error(RuntimeError("boom"), "embedding")

        assert (error.retryable, error.error_code) == (False, "unknown")
        assert "embedding failed" in error.message

    def test_enrichment_error_should_pass_through(self) -> None:
        original = EnrichmentError("bad", status_code=413)

        assert to_enrichment_error(original, "caption") is original


class TestClassifyRetry:
    """Test suite for classify_retry()."""

    def test_payload_error_should_never_retry(self) -> None:
        assert classify_retry(ItemPayloadError("product_json is not valid JSON")) == (False, "invalid_payload")

    def test_enrichment_error_should_use_its_flags(self) -> None:
        assert classify_retry(EnrichmentError("busy", status_code=429, retryable=True)) == (True, "http_429")
        assert classify_retry(EnrichmentError("bad", status_code=400)) == (False, "http_400")

    def test_store_error_should_be_classified_by_its_cause(self) -> None:
        """Test a wrapped store outage is retried like the raw driver error."""
        # Arrange
        error = QueueOperationError("update_item_step failed", operation="update_item_step")
        error.__cause__ = OperationalError("UPDATE", {}, Exception("gone"))

        # Act / Assert
        assert classify_retry(error) == (True, "db_unavailable")
        assert classify_retry(QueueOperationError("claim failed")) == (False, "unknown")

    @pytest.mark.parametrize(
        "error, expected",
        [
            (httpx.ConnectTimeout("t"), (True, "timeout")),
            (asyncio.TimeoutError(), (True, "timeout")),
            (httpx.ConnectError("c"), (True, "network")),
            (ConnectionResetError(), (True, "network")),
            (OperationalError("SELECT 1", {}, Exception("gone")), (True, "db_unavailable")),
            (IntegrityError("INSERT", {}, Exception("dup")), (False, "unknown")),
            (KeyError("x"), (False, "unknown")),
        ],
    )
    def test_plain_exceptions(self, error, expected) -> None:
        assert classify_retry(error) == expected


class TestCalcRetryAfterSeconds:
    """Test suite for calc_retry_after_seconds()."""

    @pytest.mark.parametrize("attempt, expected", [(0, 2), (1, 2), (2, 4), (3, 8), (5, 32), (6, 60), (50, 60)])
    def test_should_grow_exponentially_and_cap(self, attempt, expected) -> None:
        assert calc_retry_after_seconds(attempt) == expected

    def test_should_respect_custom_cap(self) -> None:
        assert calc_retry_after_seconds(10, max_delay=5) == 5
