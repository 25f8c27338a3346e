"""
Product text embedding ORM model.

Dense text vectors for product JSON and image captions, consumed by the
search side. Rows are keyed by product_id (not by import item) and
outlive the job that produced them.

Dependencies: sqlalchemy, pgvector, product_import.boundary.db.base
System role: Downstream store written by text embedding and captioning
"""

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from product_import.boundary.db.base import Base, TimestampMixin, UUIDMixin

TEXT_EMBEDDING_DIMENSION = 1536

PRODUCT_JSON_SOURCE = "product_json"
MAIN_IMAGE_CAPTION_SOURCE = "image_caption"
SLIDE_IMAGE_COUNT = 8
CAPTION_TEXT_SOURCES = [MAIN_IMAGE_CAPTION_SOURCE] + [
    f"slide_image_caption_{index}" for index in range(1, SLIDE_IMAGE_COUNT + 1)
]


class ProductTextEmbeddingModel(Base, UUIDMixin, TimestampMixin):
    """
    Product text embedding ORM model.

    Attributes:
        product_id: Product key shared with import items
        city_code: Optional region code
        text: Embedded text (product summary or caption)
        text_source: product_json, image_caption or slide_image_caption_N
        embedding: pgvector column (JSON on SQLite for tests)
        model / dim: Embedding provenance
        metadata_: Free-form JSON context (column name "metadata")
        text_hash: Upsert key; sha256 of text (plus source for captions)
    """

    __tablename__ = "product_text_embeddings"

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    city_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    text_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(TEXT_EMBEDDING_DIMENSION).with_variant(JSON(), "sqlite"),
        nullable=False,
    )
    model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dim: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    text_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_product_text_embeddings_product_source", "product_id", "text_source"),
    )
