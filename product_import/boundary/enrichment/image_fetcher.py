"""
Product image download.

Fetches product images over HTTP for data-URL captioning and for the
vectorize API upload, enforcing content type and size limits.

Dependencies: httpx
System role: Image transport for the caption and vectorize enrichers
"""

import base64
import logging
from dataclasses import dataclass

import httpx

from product_import.boundary.enrichment.errors import to_enrichment_error
from product_import.core.exceptions import EnrichmentError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = ("image/png", "image/jpeg", "image/jpg")


@dataclass(frozen=True)
class FetchedImage:
    """Downloaded image bytes with their media type."""

    content: bytes
    content_type: str
    filename: str

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class ImageFetcher:
    """Downloads product images with a shared httpx.AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 10.0,
        max_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        """
        Args:
            client: Shared async HTTP client
            timeout_seconds: Per-download timeout
            max_bytes: Largest accepted image
        """
        self._client = client
        self._timeout = timeout_seconds
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> FetchedImage:
        """
        Download an image.

        Raises:
            EnrichmentError: 400 for failed downloads or unsupported types,
                413 when the image exceeds max_bytes, timeout/network for
                transport failures (retryable)
        """
        try:
            response = await self._client.get(url, timeout=self._timeout, follow_redirects=True)
        except httpx.HTTPError as e:
            raise to_enrichment_error(e, "image download") from e

        if response.status_code >= 400:
            # The image host answered; the URL itself is bad.
            raise EnrichmentError(
                f"Failed to download image: {response.status_code}",
                status_code=400,
                retryable=False,
                details={"url": url, "upstream_status": response.status_code},
            )

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip().lower()
        if content_type not in SUPPORTED_IMAGE_TYPES:
            raise EnrichmentError(
                "Unsupported image type",
                status_code=400,
                details={"url": url, "content_type": content_type},
            )

        content = response.content
        if len(content) > self._max_bytes:
            raise EnrichmentError(
                "Image exceeds size limit",
                status_code=413,
                details={"url": url, "bytes": len(content)},
            )

        filename = url.rstrip("/").rsplit("/", 1)[-1].split("?")[0] or "image"
        logger.debug(
            "%s:fetch - Downloaded image",
            __name__,
            extra={"url": url, "bytes": len(content), "content_type": content_type},
        )
        return FetchedImage(content=content, content_type=content_type, filename=filename)
