"""
Image caption enricher.

Asks a multimodal LangChain chat model (Gemini) for a short caption of a
product image. In data_url mode the image is downloaded first and inlined
as base64 so the model never fetches third-party URLs itself.

Dependencies: langchain_core, langchain_google_genai (via the injected model)
System role: Caption step of the import pipeline
"""

import logging

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage

from product_import.boundary.db.models.import_job_model import CaptionImageInput
from product_import.boundary.enrichment.errors import to_enrichment_error
from product_import.boundary.enrichment.image_fetcher import ImageFetcher
from product_import.core.exceptions import EnrichmentError

logger = logging.getLogger(__name__)


def _message_text(content) -> str:
    """Flatten chat message content (str or list of parts) into text."""
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class ImageCaptioner:
    """Generates captions for product images."""

    def __init__(
        self,
        chat_model: BaseChatModel,
        image_fetcher: ImageFetcher,
        prompt: str = "Describe this product image briefly and factually.",
    ) -> None:
        """
        Args:
            chat_model: Multimodal chat model
            image_fetcher: Downloader used in data_url mode
            prompt: Instruction sent with every image
        """
        self._chat_model = chat_model
        self._image_fetcher = image_fetcher
        self._prompt = prompt

    async def caption(
        self,
        image_url: str,
        mode: CaptionImageInput = CaptionImageInput.URL,
    ) -> str:
        """
        Caption one image.

        Args:
            image_url: Public image URL
            mode: Pass the URL through or inline the downloaded bytes

        Returns:
            Non-empty caption text

        Raises:
            EnrichmentError: Download/provider failure or empty response
        """
        if mode == CaptionImageInput.DATA_URL:
            image = await self._image_fetcher.fetch(image_url)
            model_url = image.to_data_url()
        else:
            model_url = image_url

        message = HumanMessage(
            content=[
                {"type": "text", "text": self._prompt},
                {"type": "image_url", "image_url": {"url": model_url}},
            ]
        )
        try:
            response = await self._chat_model.ainvoke([message])
        except Exception as e:
            raise to_enrichment_error(e, "Caption") from e

        caption = _message_text(response.content).strip()
        if not caption:
            raise EnrichmentError(
                "Caption response was empty",
                status_code=500,
                retryable=True,
            )
        logger.debug(
            "%s:caption - Captioned image",
            __name__,
            extra={"image_url": image_url, "mode": mode.value, "chars": len(caption)},
        )
        return caption
