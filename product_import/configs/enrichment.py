"""
Enrichment provider configuration settings.

Model identifiers, dimensions, endpoints and timeouts for the text
embedding, image caption and image vectorization collaborators.

Dependencies: pydantic, pydantic_settings
System role: External AI provider configuration
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from product_import.configs.base import BaseSettings


class EnrichmentSettings(BaseSettings):
    """External enrichment provider configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ENRICHMENT_",
        case_sensitive=False,
        extra="ignore",
    )

    google_api_key: str | None = Field(
        default=None,
        description="Google Generative AI API key (falls back to GOOGLE_API_KEY)",
    )

    text_embedding_model: str = Field(
        default="models/gemini-embedding-001",
        description="Text embedding model ID",
    )
    text_embedding_dimension: int = Field(
        default=1536,
        description="Text embedding vector dimension (must match product_text_embeddings)",
    )

    caption_model: str = Field(
        default="gemini-2.5-flash",
        description="Multimodal chat model used for image captions",
    )
    caption_prompt: str = Field(
        default="Describe this product image briefly and factually.",
        description="Instruction sent with every caption request",
    )
    caption_max_tokens: int = Field(default=256, description="Caption length cap")

    vectorize_api_url: str = Field(
        default="http://localhost:8080/embed",
        description="Image vectorization endpoint (multipart upload of the image file)",
    )
    vectorize_api_key: str | None = Field(default=None, description="Bearer token for the vectorize API")
    image_vector_dimension: int = Field(
        default=512,
        description="Image embedding dimension (must match product_image_vectors)",
    )

    request_timeout_seconds: float = Field(default=15.0, description="Provider request timeout")
    image_fetch_timeout_seconds: float = Field(default=10.0, description="Image download timeout")
    max_image_bytes: int = Field(default=5 * 1024 * 1024, description="Largest image inlined as data URL")
