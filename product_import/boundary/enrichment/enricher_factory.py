"""
Enricher factory.

Builds the enrichment collaborators from settings. The Google models are
only constructed when first needed so that API processes without a key
can still serve queue operations.

Dependencies: httpx, langchain_google_genai, product_import.configs
System role: Wiring of the enrichment boundary
"""

import logging
import os
from dataclasses import dataclass

import httpx
from langchain_google_genai import ChatGoogleGenerativeAI

from product_import.boundary.enrichment.embeddings_wrapper import FixedDimensionEmbeddings
from product_import.boundary.enrichment.image_captioner import ImageCaptioner
from product_import.boundary.enrichment.image_fetcher import ImageFetcher
from product_import.boundary.enrichment.image_vectorizer import ImageVectorizer
from product_import.boundary.enrichment.text_embedder import TextEmbedder
from product_import.configs.enrichment import EnrichmentSettings

logger = logging.getLogger(__name__)


@dataclass
class Enrichers:
    """The three enrichment collaborators used by the worker."""

    text_embedder: TextEmbedder
    image_captioner: ImageCaptioner
    image_vectorizer: ImageVectorizer


def create_enrichers(settings: EnrichmentSettings, http_client: httpx.AsyncClient) -> Enrichers:
    """
    Build enrichers from configuration.

    Args:
        settings: Enrichment provider settings
        http_client: Shared client for image downloads and the vectorize API

    Returns:
        Enrichers bundle

    Raises:
        ValueError: No Google API key configured
    """
    google_api_key = settings.google_api_key or os.getenv("GOOGLE_API_KEY")
    if not google_api_key:
        raise ValueError("ENRICHMENT_GOOGLE_API_KEY or GOOGLE_API_KEY is required")

    image_fetcher = ImageFetcher(
        http_client,
        timeout_seconds=settings.image_fetch_timeout_seconds,
        max_bytes=settings.max_image_bytes,
    )

    embeddings = FixedDimensionEmbeddings(
        model=settings.text_embedding_model,
        output_dimensionality=settings.text_embedding_dimension,
        google_api_key=google_api_key,
    )
    chat_model = ChatGoogleGenerativeAI(
        model=settings.caption_model,
        google_api_key=google_api_key,
        temperature=0.2,
        max_output_tokens=settings.caption_max_tokens,
        timeout=settings.request_timeout_seconds,
        max_retries=0,
    )
    logger.info(
        f"{__name__}:create_enrichers - embedding_model={settings.text_embedding_model}, "
        f"caption_model={settings.caption_model}, vectorize_api_url={settings.vectorize_api_url}"
    )

    return Enrichers(
        text_embedder=TextEmbedder(
            embeddings,
            model_name=settings.text_embedding_model,
            dimension=settings.text_embedding_dimension,
        ),
        image_captioner=ImageCaptioner(chat_model, image_fetcher, prompt=settings.caption_prompt),
        image_vectorizer=ImageVectorizer(
            http_client,
            image_fetcher,
            api_url=settings.vectorize_api_url,
            dimension=settings.image_vector_dimension,
            api_key=settings.vectorize_api_key,
            timeout_seconds=settings.request_timeout_seconds,
        ),
    )
