"""
Test suite for dependency injection container.

Tests factory functions for service creation and configuration.
Verifies ImportQueueService and ImportRunner wiring and the service cache.

System role: Verification of DI container
"""

from unittest.mock import AsyncMock, MagicMock, PropertyMock, patch

import httpx
import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.api.deps import get_import_queue_service, get_import_runner
from product_import.api.deps.dependencies import ServiceCache
from product_import.application.services import ImportQueueService, ImportRunner
from product_import.boundary.enrichment import create_enrichers
from product_import.configs import Settings
from product_import.configs.enrichment import EnrichmentSettings
from product_import.configs.queue import QueueSettings


@pytest.fixture
def mock_db_session() -> AsyncSession:
    """Provide mock async database session."""
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def settings() -> Settings:
    return Settings(queue=QueueSettings(item_concurrency=3))


class TestGetImportQueueService:
    """Test suite for get_import_queue_service factory."""

    def test_should_bind_session_and_queue_settings(self, mock_db_session: AsyncSession, settings: Settings) -> None:
        """Test the service gets the request session and the queue settings."""
        # Act
        service = get_import_queue_service(db=mock_db_session, settings=settings)

        # Assert
        assert isinstance(service, ImportQueueService)
        assert service.db is mock_db_session
        assert service.settings.item_concurrency == 3


class TestGetImportRunner:
    """Test suite for get_import_runner factory."""

    def test_should_build_runner_from_cached_processor(self, settings: Settings) -> None:
        """Test the runner uses the cached processor and the session factory."""
        # Arrange
        cache = MagicMock()
        session_factory = MagicMock()

        with patch("product_import.api.deps.dependencies.get_service_cache", return_value=cache), patch(
            "product_import.api.deps.dependencies.get_async_session_factory", return_value=session_factory
        ):
            # Act
            runner = get_import_runner(settings=settings)

        # Assert
        assert isinstance(runner, ImportRunner)
        assert runner._processor is cache.processor
        assert runner._session_factory is session_factory

    def test_should_answer_503_when_enrichment_is_not_configured(self, settings: Settings) -> None:
        """Test a missing API key surfaces as service unavailable."""
        # Arrange
        cache = MagicMock()
        type(cache).processor = PropertyMock(side_effect=ValueError("ENRICHMENT_GOOGLE_API_KEY or GOOGLE_API_KEY is required"))

        with patch("product_import.api.deps.dependencies.get_service_cache", return_value=cache):
            # Act / Assert
            with pytest.raises(HTTPException) as exc_info:
                get_import_runner(settings=settings)

        assert exc_info.value.status_code == 503
        assert "GOOGLE_API_KEY" in exc_info.value.detail


class TestCreateEnrichers:
    """Test suite for create_enrichers()."""

    def test_should_require_api_key(self, monkeypatch) -> None:
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

        with pytest.raises(ValueError):
            create_enrichers(EnrichmentSettings(google_api_key=None), MagicMock(spec=httpx.AsyncClient))


class TestServiceCache:
    """Test suite for ServiceCache."""

    @pytest.mark.asyncio
    async def test_http_client_should_be_cached_and_closed(self) -> None:
        # Arrange
        cache = ServiceCache()

        # Act
        client = cache.http_client
        same = cache.http_client
        await cache.aclose()

        # Assert
        assert client is same
        assert client.is_closed
        assert cache.http_client is not client
        await cache.aclose()
