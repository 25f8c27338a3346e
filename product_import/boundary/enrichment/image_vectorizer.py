"""
Image vectorization enricher.

Downloads a product image and posts it to the vectorize HTTP API, which
answers with a fixed-dimension image embedding. Transient API failures
(429, 5xx, timeouts, connection errors) are retried with exponential
backoff before the error is surfaced to the worker.

Dependencies: httpx, tenacity
System role: Image vector step of the import pipeline
"""

import json
import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from product_import.boundary.enrichment.errors import is_retryable_status, to_enrichment_error
from product_import.boundary.enrichment.image_fetcher import ImageFetcher
from product_import.boundary.enrichment.text_embedder import EmbeddingResult
from product_import.core.exceptions import EnrichmentError

logger = logging.getLogger(__name__)

VECTORIZE_ATTEMPTS = 3


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_status(error.response.status_code)
    return isinstance(error, httpx.TransportError)


class ImageVectorizer:
    """Client for the image vectorize API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        image_fetcher: ImageFetcher,
        api_url: str,
        dimension: int = 512,
        api_key: str | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        """
        Args:
            client: Shared async HTTP client
            image_fetcher: Downloader for the source image
            api_url: Vectorize endpoint (multipart upload)
            dimension: Expected vector length
            api_key: Optional bearer token
            timeout_seconds: Request timeout
        """
        self._client = client
        self._image_fetcher = image_fetcher
        self._api_url = api_url
        self._dimension = dimension
        self._api_key = api_key
        self._timeout = timeout_seconds

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(VECTORIZE_ATTEMPTS),
        wait=wait_exponential_jitter(initial=0.5, max=4, jitter=0.5),
        before_sleep=lambda retry_state: logger.warning(
            f"{__name__}:_post_with_retry - Retry {retry_state.attempt_number}/{VECTORIZE_ATTEMPTS} "
            f"after transient vectorize failure"
        ),
        reraise=True,
    )
    async def _post_with_retry(self, files: dict, data: dict) -> dict:
        """POST the image with retry on transient failures."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
        response = await self._client.post(
            self._api_url,
            files=files,
            data=data,
            headers=headers,
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.json()

    async def embed_image(self, image_url: str) -> EmbeddingResult:
        """
        Vectorize one image.

        Raises:
            EnrichmentError: Download/API failure or malformed response
        """
        image = await self._image_fetcher.fetch(image_url)
        files = {"file": (image.filename, image.content, image.content_type)}
        data = {"options": json.dumps({"timeout_ms": int(self._timeout * 1000)})}

        try:
            payload = await self._post_with_retry(files, data)
        except (httpx.HTTPError, ValueError) as e:
            raise to_enrichment_error(e, "Vectorize API") from e

        vector = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(vector, list):
            raise EnrichmentError(
                "Invalid embedding response from vectorize API",
                status_code=502,
                retryable=True,
            )
        if len(vector) != self._dimension:
            raise EnrichmentError(
                f"Unexpected image embedding length: {len(vector)} (expected {self._dimension})",
                status_code=500,
                retryable=False,
                error_code="bad_dimension",
            )
        return EmbeddingResult(
            vector=[float(v) for v in vector],
            model=str(payload.get("model") or "unknown"),
        )
