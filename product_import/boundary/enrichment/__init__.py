"""
Enrichment boundary: text embedding, image captioning and image vectorization.

Exports:
  - TextEmbedder, ImageCaptioner, ImageVectorizer, ImageFetcher
  - EmbeddingResult, FetchedImage
  - Enrichers, create_enrichers(): Settings-driven wiring
  - to_enrichment_error(): Provider error classification
"""

from product_import.boundary.enrichment.enricher_factory import Enrichers, create_enrichers
from product_import.boundary.enrichment.errors import to_enrichment_error
from product_import.boundary.enrichment.image_captioner import ImageCaptioner
from product_import.boundary.enrichment.image_fetcher import FetchedImage, ImageFetcher
from product_import.boundary.enrichment.image_vectorizer import ImageVectorizer
from product_import.boundary.enrichment.text_embedder import EmbeddingResult, TextEmbedder

__all__ = [
    "EmbeddingResult",
    "Enrichers",
    "FetchedImage",
    "ImageCaptioner",
    "ImageFetcher",
    "ImageVectorizer",
    "TextEmbedder",
    "create_enrichers",
    "to_enrichment_error",
]
