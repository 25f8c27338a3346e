"""
Product image vector ORM model.

One image embedding per (product_id, slide_index); slide_index 0 is the
main image, 1..8 the slide images.

Dependencies: sqlalchemy, pgvector, product_import.boundary.db.base
System role: Downstream store written by image vectorization
"""

from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from product_import.boundary.db.base import Base, TimestampMixin, UUIDMixin

IMAGE_VECTOR_DIMENSION = 512


class ProductImageVectorModel(Base, UUIDMixin, TimestampMixin):
    """Image embedding row for a product image."""

    __tablename__ = "product_image_vectors"

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    city_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    slide_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(IMAGE_VECTOR_DIMENSION).with_variant(JSON(), "sqlite"),
        nullable=False,
    )
    model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    dim: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("product_id", "slide_index", name="uq_product_image_vectors_product_slide"),
        Index("ix_product_image_vectors_product", "product_id"),
    )
