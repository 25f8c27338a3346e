"""
Downstream store CRUD operations.

Dedup lookups, idempotent upserts and batched cleanup for the enriched
product stores (product_text_embeddings, product_image_vectors). Both
tables are addressed by product_id only and outlive the importing job.

Dependencies: sqlalchemy, product_import.boundary.db.models
System role: Dedup gate and downstream cleanup for the import pipeline
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.base import utcnow
from product_import.boundary.db.models.product_image_vector_model import ProductImageVectorModel
from product_import.boundary.db.models.product_text_embedding_model import ProductTextEmbeddingModel

DEFAULT_DELETE_BATCH_SIZE = 500


@dataclass(frozen=True)
class DownstreamDeleteResult:
    """Rows removed from the downstream stores."""

    product_ids: int
    deleted_text: int
    deleted_images: int


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _insert_for(session: AsyncSession, table):
    """Dialect-specific INSERT supporting ON CONFLICT DO UPDATE."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


def _unique(product_ids: Iterable[str | None]) -> list[str]:
    return sorted({product_id for product_id in product_ids if product_id})


class DownstreamCRUD:
    """
    Operations on the downstream enrichment stores.

    Not a BaseCRUD subclass: rows are addressed by product_id rather than
    by primary key.
    """

    async def existing_for_sources(
        self,
        session: AsyncSession,
        product_ids: Iterable[str | None],
        sources: Iterable[str],
    ) -> set[str]:
        """
        Products having at least one text embedding from any of `sources`.

        Args:
            session: Async database session
            product_ids: Candidate product ids (None/empty entries ignored)
            sources: text_source values to look for

        Returns:
            Subset of product_ids already enriched
        """
        ids = _unique(product_ids)
        source_list = list(sources)
        if not ids or not source_list:
            return set()

        stmt = (
            select(ProductTextEmbeddingModel.product_id)
            .where(
                ProductTextEmbeddingModel.product_id.in_(ids),
                ProductTextEmbeddingModel.text_source.in_(source_list),
            )
            .distinct()
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())

    async def existing_vectorized(
        self,
        session: AsyncSession,
        product_ids: Iterable[str | None],
    ) -> set[str]:
        """Products having at least one image vector."""
        ids = _unique(product_ids)
        if not ids:
            return set()

        stmt = (
            select(ProductImageVectorModel.product_id)
            .where(ProductImageVectorModel.product_id.in_(ids))
            .distinct()
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())

    async def delete_for_products(
        self,
        session: AsyncSession,
        product_ids: Iterable[str | None],
        batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
    ) -> DownstreamDeleteResult:
        """
        Delete every downstream row of the given products in batches.

        Args:
            session: Async database session
            product_ids: Products to clean
            batch_size: Product ids per DELETE statement

        Returns:
            DownstreamDeleteResult with affected row counts
        """
        ids = _unique(product_ids)
        deleted_text = 0
        deleted_images = 0
        for chunk in _chunks(ids, max(1, batch_size)):
            result = await session.execute(
                delete(ProductTextEmbeddingModel).where(ProductTextEmbeddingModel.product_id.in_(chunk))
            )
            deleted_text += result.rowcount
            result = await session.execute(
                delete(ProductImageVectorModel).where(ProductImageVectorModel.product_id.in_(chunk))
            )
            deleted_images += result.rowcount

        return DownstreamDeleteResult(
            product_ids=len(ids),
            deleted_text=deleted_text,
            deleted_images=deleted_images,
        )

    async def upsert_text_embedding(
        self,
        session: AsyncSession,
        *,
        product_id: str,
        city_code: str | None,
        text: str,
        text_source: str,
        embedding: list[float],
        model: str,
        text_hash: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Insert a text embedding or refresh the row sharing its text_hash."""
        now = now or utcnow()
        table = ProductTextEmbeddingModel.__table__
        values = {
            "product_id": product_id,
            "city_code": city_code,
            "text": text,
            "text_source": text_source,
            "embedding": embedding,
            "model": model,
            "dim": len(embedding),
            "metadata": metadata,
            "text_hash": text_hash,
            "created_at": now,
            "updated_at": now,
        }
        stmt = _insert_for(session, table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.text_hash],
            set_={
                "product_id": stmt.excluded.product_id,
                "city_code": stmt.excluded.city_code,
                "text": stmt.excluded.text,
                "text_source": stmt.excluded.text_source,
                "embedding": stmt.excluded.embedding,
                "model": stmt.excluded.model,
                "dim": stmt.excluded.dim,
                "metadata": stmt.excluded["metadata"],
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)

    async def upsert_image_vector(
        self,
        session: AsyncSession,
        *,
        product_id: str,
        city_code: str | None,
        slide_index: int,
        image_url: str | None,
        embedding: list[float],
        model: str,
        now: datetime | None = None,
    ) -> None:
        """Insert an image vector or refresh the (product_id, slide_index) row."""
        now = now or utcnow()
        table = ProductImageVectorModel.__table__
        stmt = _insert_for(session, table).values(
            product_id=product_id,
            city_code=city_code,
            slide_index=slide_index,
            image_url=image_url,
            embedding=embedding,
            model=model,
            dim=len(embedding),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.product_id, table.c.slide_index],
            set_={
                "city_code": stmt.excluded.city_code,
                "image_url": stmt.excluded.image_url,
                "embedding": stmt.excluded.embedding,
                "model": stmt.excluded.model,
                "dim": stmt.excluded.dim,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)


downstream_crud = DownstreamCRUD()
