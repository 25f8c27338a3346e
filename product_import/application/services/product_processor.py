"""
Per-product enrichment pipeline.

Parses and validates one claimed item, applies the existing-product
policy, calls the enabled enrichers concurrently and writes their output
to the downstream stores.

Enrichment (network) and persistence (database) are split: prepare()
never holds a write transaction, persist() runs in the caller's
transaction right before the outcome is reported.

Dependencies: asyncio, product_import.boundary.enrichment, product_import.boundary.db.CRUD
System role: Item-level work of the processing worker
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.CRUD.downstream_crud import downstream_crud
from product_import.boundary.db.CRUD.import_item_crud import ClaimedItem
from product_import.boundary.db.models.import_job_model import (
    CaptionImageInput,
    ExistingBehavior,
    ImportJobModel,
)
from product_import.boundary.db.models.product_text_embedding_model import (
    CAPTION_TEXT_SOURCES,
    MAIN_IMAGE_CAPTION_SOURCE,
    PRODUCT_JSON_SOURCE,
)
from product_import.boundary.enrichment.image_captioner import ImageCaptioner
from product_import.boundary.enrichment.image_vectorizer import ImageVectorizer
from product_import.boundary.enrichment.text_embedder import EmbeddingResult, TextEmbedder
from product_import.core.exceptions import ItemPayloadError
from product_import.core.product_text import build_product_embedding_text, hash_text, product_image_urls

logger = logging.getLogger(__name__)


def caption_source(slide_index: int) -> str:
    """text_source of a caption: image_caption for the main image, slide_image_caption_N otherwise."""
    if slide_index == 0:
        return MAIN_IMAGE_CAPTION_SOURCE
    return f"slide_image_caption_{slide_index}"


@dataclass
class KnownOutputs:
    """Bulk dedup answers for one product; None means "not looked up"."""

    text: bool | None = None
    captions: bool | None = None
    vectors: bool | None = None


@dataclass
class TextRow:
    text: str
    text_source: str
    embedding: EmbeddingResult
    text_hash: str
    metadata: dict[str, Any]


@dataclass
class ImageRow:
    slide_index: int
    image_url: str
    embedding: EmbeddingResult


@dataclass
class PreparedProduct:
    """Enrichment output of one product, ready to be written."""

    product_id: str
    city_code: str | None
    text_rows: list[TextRow] = field(default_factory=list)
    image_rows: list[ImageRow] = field(default_factory=list)
    caption_failures: int = 0


def parse_product(item: ClaimedItem) -> dict[str, Any]:
    """
    Parse and normalise an item's product JSON.

    The item's product_id wins over the payload's id; the item's city_code
    fills a missing payload city_code.

    Raises:
        ItemPayloadError: Invalid JSON, not an object, or missing id/name+description
    """
    if not (item.product_json or "").strip():
        raise ItemPayloadError("product_json is required")
    try:
        product = json.loads(item.product_json)
    except (json.JSONDecodeError, TypeError) as e:
        raise ItemPayloadError("product_json is not valid JSON", {"error": str(e)}) from e
    if not isinstance(product, dict):
        raise ItemPayloadError("product_json must be an object")

    if item.product_id:
        product["id"] = item.product_id
    if item.city_code and not product.get("city_code"):
        product["city_code"] = item.city_code

    if product.get("id") is None or str(product.get("id")).strip() == "":
        raise ItemPayloadError("product.id is required")
    if not product.get("name") and not product.get("description"):
        raise ItemPayloadError("product.name or product.description is required")
    return product


class ProductProcessor:
    """Runs the enabled enrichment steps for one product."""

    def __init__(
        self,
        text_embedder: TextEmbedder | None,
        image_captioner: ImageCaptioner | None,
        image_vectorizer: ImageVectorizer | None,
        caption_concurrency: int = 4,
        vectorize_concurrency: int = 2,
    ) -> None:
        """
        Args:
            text_embedder: Required when a job enables text embedding or captions
            image_captioner: Required when a job enables captions
            image_vectorizer: Required when a job enables image vectors
            caption_concurrency: Concurrent caption calls per product
            vectorize_concurrency: Concurrent vectorize calls per product
        """
        self._text_embedder = text_embedder
        self._image_captioner = image_captioner
        self._image_vectorizer = image_vectorizer
        self._caption_concurrency = max(1, caption_concurrency)
        self._vectorize_concurrency = max(1, vectorize_concurrency)

    async def outputs_exist(
        self,
        session: AsyncSession,
        job: ImportJobModel,
        product_id: str,
        known: KnownOutputs,
    ) -> bool:
        """True when every enabled output already exists for the product."""
        if job.do_text_embedding:
            exists = known.text
            if exists is None:
                exists = bool(await downstream_crud.existing_for_sources(session, [product_id], [PRODUCT_JSON_SOURCE]))
            if not exists:
                return False
        if job.do_image_captions:
            exists = known.captions
            if exists is None:
                exists = bool(await downstream_crud.existing_for_sources(session, [product_id], CAPTION_TEXT_SOURCES))
            if not exists:
                return False
        if job.do_image_vectors:
            exists = known.vectors
            if exists is None:
                exists = bool(await downstream_crud.existing_vectorized(session, [product_id]))
            if not exists:
                return False
        return True

    async def prepare(
        self,
        session: AsyncSession,
        job: ImportJobModel,
        item: ClaimedItem,
        known: KnownOutputs | None = None,
    ) -> PreparedProduct | None:
        """
        Validate the item and compute its enrichment output.

        Args:
            session: Session used for read-only dedup lookups
            job: Job policy snapshot
            item: Claimed item
            known: Bulk dedup answers, if already looked up

        Returns:
            PreparedProduct, or None when the skip policy applies

        Raises:
            ItemPayloadError: Unusable payload (never retried)
            EnrichmentError: Text embedding or vectorize failure
        """
        product = parse_product(item)
        product_id = str(product["id"])
        city_code = product.get("city_code") or None

        if job.existing_behavior == ExistingBehavior.SKIP:
            if await self.outputs_exist(session, job, product_id, known or KnownOutputs()):
                return None

        prepared = PreparedProduct(product_id=product_id, city_code=city_code)
        tasks = []
        if job.do_text_embedding:
            tasks.append(self._embed_product_text(product, prepared))
        if job.do_image_captions:
            tasks.append(self._caption_images(product, prepared, job.caption_image_input))
        if job.do_image_vectors:
            tasks.append(self._vectorize_images(product, prepared))
        if tasks:
            await asyncio.gather(*tasks)

        # Stable write order regardless of completion order
        prepared.text_rows.sort(key=lambda row: row.text_source)
        prepared.image_rows.sort(key=lambda row: row.slide_index)
        return prepared

    async def persist(
        self,
        session: AsyncSession,
        job: ImportJobModel,
        prepared: PreparedProduct,
    ) -> None:
        """
        Write prepared output; delete_then_insert clears the product's rows first.

        Runs inside the caller's transaction and does not commit.
        """
        if job.existing_behavior == ExistingBehavior.DELETE_THEN_INSERT:
            await downstream_crud.delete_for_products(session, [prepared.product_id])

        for row in prepared.text_rows:
            await downstream_crud.upsert_text_embedding(
                session,
                product_id=prepared.product_id,
                city_code=prepared.city_code,
                text=row.text,
                text_source=row.text_source,
                embedding=row.embedding.vector,
                model=row.embedding.model,
                text_hash=row.text_hash,
                metadata=row.metadata,
            )
        for row in prepared.image_rows:
            await downstream_crud.upsert_image_vector(
                session,
                product_id=prepared.product_id,
                city_code=prepared.city_code,
                slide_index=row.slide_index,
                image_url=row.image_url,
                embedding=row.embedding.vector,
                model=row.embedding.model,
            )

    def _require(self, collaborator, name: str):
        if collaborator is None:
            raise RuntimeError(f"{name} is not configured")
        return collaborator

    async def _embed_product_text(self, product: dict[str, Any], prepared: PreparedProduct) -> None:
        embedder = self._require(self._text_embedder, "Text embedder")
        text = build_product_embedding_text(product)
        if not text:
            raise ItemPayloadError("product has no text to embed")
        embedding = await embedder.embed(text)
        prepared.text_rows.append(
            TextRow(
                text=text,
                text_source=PRODUCT_JSON_SOURCE,
                embedding=embedding,
                text_hash=hash_text(text),
                metadata={"source": PRODUCT_JSON_SOURCE, "raw": product},
            )
        )

    async def _caption_images(
        self,
        product: dict[str, Any],
        prepared: PreparedProduct,
        mode: CaptionImageInput,
    ) -> None:
        """Caption every image; a failing image is logged and left out."""
        captioner = self._require(self._image_captioner, "Image captioner")
        embedder = self._require(self._text_embedder, "Text embedder")
        semaphore = asyncio.Semaphore(self._caption_concurrency)

        async def caption_one(slide_index: int, url: str) -> None:
            source = caption_source(slide_index)
            async with semaphore:
                try:
                    caption = await captioner.caption(url, mode)
                    embedding = await embedder.embed(caption)
                except Exception as e:
                    prepared.caption_failures += 1
                    logger.warning(
                        "%s:_caption_images - Caption failed for product %s slide %s: %s",
                        __name__,
                        prepared.product_id,
                        slide_index,
                        e,
                        extra={"product_id": prepared.product_id, "slide_index": slide_index},
                    )
                    return
            prepared.text_rows.append(
                TextRow(
                    text=caption,
                    text_source=source,
                    embedding=embedding,
                    text_hash=hash_text(caption, source),
                    metadata={"source": source, "image_url": url, "slide_index": slide_index},
                )
            )

        await asyncio.gather(*(caption_one(index, url) for index, url in product_image_urls(product)))

    async def _vectorize_images(self, product: dict[str, Any], prepared: PreparedProduct) -> None:
        vectorizer = self._require(self._image_vectorizer, "Image vectorizer")
        semaphore = asyncio.Semaphore(self._vectorize_concurrency)

        async def vectorize_one(slide_index: int, url: str) -> None:
            async with semaphore:
                embedding = await vectorizer.embed_image(url)
            prepared.image_rows.append(ImageRow(slide_index=slide_index, image_url=url, embedding=embedding))

        await asyncio.gather(*(vectorize_one(index, url) for index, url in product_image_urls(product)))
