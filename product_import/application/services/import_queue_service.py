"""
Import queue service orchestrator.

Coordinates job creation, batched item ingestion, the claim queue,
operator actions (requeue, add processing, bulk skip, reconcile), stats
and cleanup. Owns the transaction boundary: every public method commits
on success and rolls back on failure.

Dependencies: sqlalchemy, product_import.boundary.db.CRUD
System role: Import queue use case orchestration
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.base import utcnow
from product_import.boundary.db.CRUD.downstream_crud import DownstreamDeleteResult, downstream_crud
from product_import.boundary.db.CRUD.import_item_crud import (
    ClaimedItem,
    QueueStats,
    RequeueResult,
    import_item_crud,
)
from product_import.boundary.db.CRUD.import_job_crud import import_job_crud
from product_import.boundary.db.models.import_item_model import ImportItemModel, ImportItemStatus
from product_import.boundary.db.models.import_job_model import (
    CaptionImageInput,
    ExistingBehavior,
    ImportJobModel,
)
from product_import.configs.queue import QueueSettings
from product_import.core.exceptions import JobNotFoundError, QueueOperationError, ValidationError

logger = logging.getLogger(__name__)


def _chunks(rows: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def validate_item_rows(rows: Sequence[dict[str, Any]]) -> None:
    """
    Reject a submission containing rows that cannot be stored.

    Raises:
        ValidationError: row_index missing or < 1, or a pending row without product_json
    """
    for position, row in enumerate(rows):
        row_index = row.get("row_index")
        if not isinstance(row_index, int) or isinstance(row_index, bool) or row_index <= 0:
            raise ValidationError(
                f"Invalid row_index at position {position}",
                field="row_index",
                details={"position": position, "row_index": row_index},
            )
        status = row.get("status") or ImportItemStatus.PENDING.value
        if status not in (ImportItemStatus.PENDING.value, ImportItemStatus.FAILED.value):
            raise ValidationError(
                f"Invalid item status at row {row_index}: {status}",
                field="status",
                details={"row_index": row_index},
            )
        if status == ImportItemStatus.PENDING.value and not (row.get("product_json") or "").strip():
            raise ValidationError(
                f"product_json is required at row {row_index}",
                field="product_json",
                details={"row_index": row_index},
            )


class ImportQueueService:
    """
    Import queue service orchestrator.

    Thin transactional layer over ImportJobCRUD, ImportItemCRUD and
    DownstreamCRUD.
    """

    def __init__(self, db: AsyncSession, settings: QueueSettings) -> None:
        """
        Initialize import queue service.

        Args:
            db: AsyncSession for database operations
            settings: Queue tuning (batch sizes, stale lease, limits)
        """
        self.db = db
        self.settings = settings

    @asynccontextmanager
    async def _transaction(self, operation: str, **context: Any):
        """Commit on success, roll back and surface store errors as QueueOperationError."""
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "%s:%s - Store operation failed",
                __name__,
                operation,
                extra={"operation": operation, "error": str(e), **context},
            )
            raise QueueOperationError(f"{operation} failed: {e}", operation=operation) from e
        except Exception:
            await self.db.rollback()
            raise

    async def get_job(self, job_id: UUID) -> ImportJobModel:
        """
        Load a job.

        Raises:
            JobNotFoundError: Job does not exist
        """
        job = await import_job_crud.get_by_id(self.db, job_id)
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    async def create_job(
        self,
        existing_behavior: ExistingBehavior = ExistingBehavior.SKIP,
        do_text_embedding: bool | None = None,
        do_image_captions: bool | None = None,
        do_image_vectors: bool | None = None,
        caption_image_input: CaptionImageInput | None = None,
    ) -> ImportJobModel:
        """
        Create an empty job with its policy; all steps default to enabled.

        Returns:
            Created ImportJobModel (pending, zero counters)
        """
        async with self._transaction("create_job"):
            job = await import_job_crud.create(
                self.db,
                existing_behavior=existing_behavior,
                do_text_embedding=True if do_text_embedding is None else do_text_embedding,
                do_image_captions=True if do_image_captions is None else do_image_captions,
                do_image_vectors=True if do_image_vectors is None else do_image_vectors,
                caption_image_input=caption_image_input or CaptionImageInput.URL,
            )
        logger.info(
            "%s:create_job - Import job created",
            __name__,
            extra={"job_id": str(job.id), "existing_behavior": job.existing_behavior.value},
        )
        return job

    async def create_job_with_items(
        self,
        rows: Sequence[dict[str, Any]],
        **policy: Any,
    ) -> ImportJobModel:
        """
        Create a job and append its items (CSV upload path).

        Raises:
            ValidationError: A row cannot be stored (nothing is created)
        """
        validate_item_rows(rows)
        job = await self.create_job(**policy)
        await self.append_items(job.id, rows)
        return await self.get_job(job.id)

    async def append_items(self, job_id: UUID, rows: Sequence[dict[str, Any]]) -> int:
        """
        Append items in batches of insert_batch_size.

        Every batch commits on its own together with its counter deltas,
        so a failure leaves the earlier batches in place (at-least-once
        append; callers resubmit the remainder).

        Args:
            job_id: Job UUID
            rows: Item rows (see ImportItemCRUD.insert_batch)

        Returns:
            Number of rows inserted

        Raises:
            JobNotFoundError: Job does not exist
            ValidationError: A row cannot be stored (nothing is inserted)
            QueueOperationError: A batch failed to commit
        """
        validate_item_rows(rows)
        await self.get_job(job_id)
        if not rows:
            return 0

        inserted = 0
        batches = list(_chunks(rows, self.settings.insert_batch_size))
        for number, batch in enumerate(batches, start=1):
            async with self._transaction("append_items", job_id=str(job_id), batch=number):
                now = utcnow()
                inserted += await import_item_crud.insert_batch(self.db, job_id, batch, now=now)
                if number == len(batches):
                    await import_job_crud.update_job_status(self.db, job_id, now=now)

        logger.info(
            "%s:append_items - Items appended",
            __name__,
            extra={"job_id": str(job_id), "inserted": inserted, "batches": len(batches)},
        )
        return inserted

    async def claim(self, job_id: UUID, limit: int) -> list[ClaimedItem]:
        """Lease up to `limit` eligible items and commit the lease."""
        async with self._transaction("claim", job_id=str(job_id)):
            return await import_item_crud.claim_pending(self.db, job_id, limit)

    async def mark_failure(
        self,
        item_id: UUID,
        job_id: UUID,
        error: str,
        error_code: str | None = None,
        attempt: int | None = None,
    ) -> bool:
        async with self._transaction("mark_failure", item_id=str(item_id)):
            return await import_item_crud.mark_failure(
                self.db, item_id, job_id, error, error_code=error_code, attempt=attempt
            )

    async def mark_skipped(
        self,
        item_id: UUID,
        job_id: UUID,
        reason: str | None = None,
        attempt: int | None = None,
    ) -> bool:
        async with self._transaction("mark_skipped", item_id=str(item_id)):
            return await import_item_crud.mark_skipped(self.db, item_id, job_id, reason=reason, attempt=attempt)

    async def mark_retry(
        self,
        item_id: UUID,
        job_id: UUID,
        error: str,
        error_code: str | None,
        retry_after_seconds: int,
        attempt: int | None = None,
    ) -> bool:
        async with self._transaction("mark_retry", item_id=str(item_id)):
            return await import_item_crud.mark_retry(
                self.db,
                item_id,
                job_id,
                error,
                error_code,
                retry_after_seconds,
                attempt=attempt,
            )

    async def release_claimed(self, job_id: UUID, item_ids: Iterable[UUID]) -> int:
        async with self._transaction("release_claimed", job_id=str(job_id)):
            return await import_item_crud.release_claimed(self.db, job_id, item_ids)

    async def update_item_step(self, item_id: UUID, step: str, detail: str | None = None) -> None:
        async with self._transaction("update_item_step", item_id=str(item_id)):
            await import_item_crud.update_item_step(self.db, item_id, step, detail)

    async def update_job_status(self, job_id: UUID):
        async with self._transaction("update_job_status", job_id=str(job_id)):
            return await import_job_crud.update_job_status(self.db, job_id)

    async def mark_started(self, job_id: UUID) -> None:
        async with self._transaction("mark_started", job_id=str(job_id)):
            await import_job_crud.mark_started(self.db, job_id)

    async def requeue_stale(self, job_id: UUID, stale_seconds: int | None = None) -> int:
        """
        Reclaim expired leases of a job and recompute its status.

        Args:
            job_id: Job UUID
            stale_seconds: Lease timeout (defaults to stale_processing_seconds)

        Returns:
            Number of items returned to pending
        """
        seconds = stale_seconds if stale_seconds is not None else self.settings.stale_processing_seconds
        async with self._transaction("requeue_stale", job_id=str(job_id)):
            now = utcnow()
            requeued = await import_item_crud.requeue_stale(self.db, job_id, seconds, now=now)
            if requeued:
                await import_job_crud.update_job_status(self.db, job_id, now=now)
        if requeued:
            logger.warning(
                "%s:requeue_stale - Stale processing items requeued",
                __name__,
                extra={"job_id": str(job_id), "requeued": requeued, "stale_seconds": seconds},
            )
        return requeued

    async def requeue_items(
        self,
        job_id: UUID,
        statuses: Iterable[ImportItemStatus | str],
    ) -> RequeueResult:
        """
        Move resolved items of the given statuses back to pending.

        Raises:
            JobNotFoundError: Job does not exist
            ValidationError: No or invalid statuses
        """
        statuses = list(statuses)
        if not statuses:
            raise ValidationError("No statuses selected for requeue", field="statuses")
        await self.get_job(job_id)
        try:
            async with self._transaction("requeue_items", job_id=str(job_id)):
                result = await import_item_crud.requeue_items(self.db, job_id, statuses)
        except ValueError as e:
            raise ValidationError(str(e), field="statuses") from e

        logger.info(
            "%s:requeue_items - Items requeued",
            __name__,
            extra={"job_id": str(job_id), "counts": result.counts},
        )
        return result

    async def add_processing(
        self,
        job_id: UUID,
        statuses: Iterable[ImportItemStatus | str],
        **flags: Any,
    ) -> RequeueResult:
        """
        Change the job's policy and requeue resolved items in one transaction.

        Used to run steps that were disabled on the first pass, e.g. enable
        captions on an already imported job.

        Args:
            job_id: Job UUID
            statuses: Previous statuses to requeue
            **flags: Policy fields (see ImportJobCRUD.update_flags)

        Raises:
            JobNotFoundError: Job does not exist
            ValidationError: No statuses or no step enabled
        """
        statuses = list(statuses)
        if not statuses:
            raise ValidationError("No statuses selected for requeue", field="statuses")
        step_flags = ("do_text_embedding", "do_image_captions", "do_image_vectors")
        if not any(flags.get(name) for name in step_flags):
            raise ValidationError("No additional processing selected", field="flags")
        await self.get_job(job_id)

        try:
            async with self._transaction("add_processing", job_id=str(job_id)):
                await import_job_crud.update_flags(self.db, job_id, **flags)
                result = await import_item_crud.requeue_items(self.db, job_id, statuses)
        except ValueError as e:
            raise ValidationError(str(e), field="statuses") from e
        return result

    async def mark_skipped_bulk(
        self,
        job_id: UUID,
        item_ids: Iterable[UUID],
        reason: str | None = None,
    ) -> int:
        """Skip pending/processing items and recompute the job status."""
        await self.get_job(job_id)
        async with self._transaction("mark_skipped_bulk", job_id=str(job_id)):
            now = utcnow()
            skipped = await import_item_crud.mark_skipped_bulk(self.db, job_id, item_ids, reason=reason, now=now)
            if skipped:
                await import_job_crud.update_job_status(self.db, job_id, now=now)
        return skipped

    async def queue_stats(self, job_id: UUID) -> QueueStats:
        return await import_item_crud.queue_stats(self.db, job_id)

    async def get_job_detail(self, job_id: UUID, preview_limit: int = 5) -> dict[str, Any]:
        """
        Job with queue stats and failed/processing previews.

        Raises:
            JobNotFoundError: Job does not exist
        """
        job = await self.get_job(job_id)
        return {
            "job": job,
            "queue_stats": await import_item_crud.queue_stats(self.db, job_id),
            "failed_items": list(await import_item_crud.failed_items(self.db, job_id, preview_limit)),
            "processing_items": list(await import_item_crud.processing_items(self.db, job_id, preview_limit)),
        }

    async def list_jobs(self, limit: int = 20) -> Sequence[ImportJobModel]:
        return await import_job_crud.list_recent(self.db, limit)

    async def items_preview(
        self,
        job_id: UUID,
        limit: int = 10,
        status: ImportItemStatus | None = None,
    ) -> Sequence[ImportItemModel]:
        """First items of a job (limit clamped to 1..200)."""
        await self.get_job(job_id)
        safe_limit = max(1, min(200, int(limit)))
        return await import_item_crud.items_preview(self.db, job_id, safe_limit, status=status)

    async def delete_downstream(self, job_id: UUID) -> DownstreamDeleteResult:
        """
        Delete downstream rows of every product the job references.

        Raises:
            JobNotFoundError: Job does not exist
        """
        await self.get_job(job_id)
        async with self._transaction("delete_downstream", job_id=str(job_id)):
            product_ids = await import_item_crud.distinct_product_ids(self.db, job_id)
            result = await downstream_crud.delete_for_products(
                self.db,
                product_ids,
                batch_size=self.settings.downstream_delete_batch_size,
            )
        logger.info(
            "%s:delete_downstream - Downstream rows deleted",
            __name__,
            extra={
                "job_id": str(job_id),
                "product_ids": result.product_ids,
                "deleted_text": result.deleted_text,
                "deleted_images": result.deleted_images,
            },
        )
        return result

    async def delete_job(
        self,
        job_id: UUID,
        delete_downstream: bool = False,
    ) -> DownstreamDeleteResult | None:
        """
        Delete a job with its items, optionally cleaning downstream rows first.

        Returns:
            DownstreamDeleteResult when delete_downstream is set, else None

        Raises:
            JobNotFoundError: Job does not exist
        """
        downstream = await self.delete_downstream(job_id) if delete_downstream else None
        async with self._transaction("delete_job", job_id=str(job_id)):
            deleted = await import_job_crud.delete_job(self.db, job_id)
        if not deleted:
            raise JobNotFoundError(str(job_id))
        logger.info("%s:delete_job - Import job deleted", __name__, extra={"job_id": str(job_id)})
        return downstream
