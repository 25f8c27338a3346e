"""
Dependency injection container.

Factory functions for FastAPI dependencies.

Dependencies: product_import.configs, product_import.application, product_import.boundary
System role: DI container for service injection
"""

from functools import lru_cache

import httpx
from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.application.services import ImportQueueService, ImportRunner, ProductProcessor
from product_import.boundary.db import get_async_db, get_async_session_factory
from product_import.configs import Settings, get_settings


class ServiceCache:
    """Container for cached service instances."""

    def __init__(self):
        self._http_client = None
        self._processor = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get cached HTTP client shared by image downloads and the vectorize API."""
        if self._http_client is None:
            settings = get_settings()
            self._http_client = httpx.AsyncClient(
                timeout=settings.enrichment.request_timeout_seconds,
                follow_redirects=True,
            )
        return self._http_client

    @property
    def processor(self) -> ProductProcessor:
        """
        Get cached product processor.

        Raises:
            ValueError: No Google API key configured
        """
        if self._processor is None:
            from product_import.boundary.enrichment import create_enrichers

            settings = get_settings()
            enrichers = create_enrichers(settings.enrichment, self.http_client)
            self._processor = ProductProcessor(
                text_embedder=enrichers.text_embedder,
                image_captioner=enrichers.image_captioner,
                image_vectorizer=enrichers.image_vectorizer,
                caption_concurrency=settings.queue.caption_concurrency,
                vectorize_concurrency=settings.queue.vectorize_concurrency,
            )
        return self._processor

    async def aclose(self) -> None:
        """Close the HTTP client and clear all cached instances."""
        if self._http_client is not None:
            await self._http_client.aclose()
        self._http_client = None
        self._processor = None


# Global service cache
_service_cache = ServiceCache()


def get_service_cache() -> ServiceCache:
    """Get service cache singleton."""
    return _service_cache


@lru_cache
def get_settings_dependency() -> Settings:
    """Get settings singleton."""
    return get_settings()


def get_import_queue_service(
    db: AsyncSession = Depends(get_async_db),
    settings: Settings = Depends(get_settings_dependency),
) -> ImportQueueService:
    """
    Get import queue service instance.

    Args:
        db: Async database session (injected via Depends)
        settings: Application settings (injected via Depends)

    Returns:
        ImportQueueService: Queue service bound to the request session
    """
    return ImportQueueService(db=db, settings=settings.queue)


def get_import_runner(settings: Settings = Depends(get_settings_dependency)) -> ImportRunner:
    """
    Get import runner instance.

    The runner opens its own sessions per claim and per item, so it gets
    the session factory rather than the request session.

    Returns:
        ImportRunner: Worker bound to the cached enrichers

    Raises:
        HTTPException(503): Enrichment is not configured
    """
    cache = get_service_cache()
    try:
        processor = cache.processor
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return ImportRunner(
        session_factory=get_async_session_factory(),
        settings=settings.queue,
        processor=processor,
    )
