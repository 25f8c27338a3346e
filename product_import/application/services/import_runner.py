"""
Import worker pass.

Runs one time-budgeted pass over a job: reclaims stale leases, claims
batches, drives ProductProcessor for every item and reports each outcome
(success, skipped, retry with backoff, failure). Items claimed but not
started before the deadline are released back to pending.

The claim and every item use their own short-lived session; enrichment
never runs inside a write transaction.

Dependencies: asyncio, httpx, sqlalchemy, product_import.application.services
System role: Processing worker for the import queue
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

import httpx
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from product_import.application.services.import_queue_service import ImportQueueService
from product_import.application.services.product_processor import KnownOutputs, ProductProcessor
from product_import.boundary.db.CRUD.downstream_crud import downstream_crud
from product_import.boundary.db.CRUD.import_item_crud import ClaimedItem, import_item_crud, trim_error
from product_import.boundary.db.models.import_job_model import (
    ExistingBehavior,
    ImportJobModel,
    ImportJobStatus,
)
from product_import.boundary.db.models.product_text_embedding_model import (
    CAPTION_TEXT_SOURCES,
    PRODUCT_JSON_SOURCE,
)
from product_import.configs.queue import QueueSettings
from product_import.core.exceptions import EnrichmentError, ItemPayloadError, QueueOperationError

logger = logging.getLogger(__name__)

# Work is not started when less than this is left of the budget
DEADLINE_MARGIN_SECONDS = 0.5
MIN_TIME_BUDGET_MS = 1000


@dataclass
class RunResult:
    """Outcome of one worker pass."""

    job: ImportJobModel
    processed: int
    retried: int
    released: int
    time_budget_ms: int
    unreported: int = 0


def classify_retry(error: BaseException) -> tuple[bool, str]:
    """
    Decide whether an item error is transient.

    Returns:
        (retryable, error_code)
    """
    if isinstance(error, QueueOperationError) and error.__cause__ is not None:
        error = error.__cause__
    if isinstance(error, ItemPayloadError):
        return False, "invalid_payload"
    if isinstance(error, EnrichmentError):
        return error.retryable, error.error_code or "enrichment_error"
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True, "timeout"
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True, "network"
    if isinstance(error, OperationalError):
        return True, "db_unavailable"
    return False, "unknown"


def calc_retry_after_seconds(attempt: int, max_delay: int = 60) -> int:
    """Exponential backoff: 2 ** attempt seconds, at least 2, capped at max_delay."""
    exponent = max(1, min(int(attempt), 10))
    return max(1, min(max_delay, 2**exponent))


def _error_message(error: BaseException) -> str:
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return trim_error(message)


class ImportRunner:
    """
    Time-budgeted worker pass over one job.

    Uses a session factory rather than a session: the claim transaction
    and every item's outcome transaction are independent.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: QueueSettings,
        processor: ProductProcessor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize import runner.

        Args:
            session_factory: Factory for short-lived AsyncSessions
            settings: Queue tuning (limits, retry policy, concurrency)
            processor: Per-product enrichment pipeline
            clock: Monotonic clock in seconds
        """
        self._session_factory = session_factory
        self._settings = settings
        self._processor = processor
        self._clock = clock

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._settings.default_claim_limit
        return max(1, min(self._settings.max_claim_limit, int(limit)))

    def _clamp_budget(self, time_budget_ms: int | None) -> int:
        if time_budget_ms is None:
            return self._settings.default_time_budget_ms
        return max(MIN_TIME_BUDGET_MS, min(self._settings.max_time_budget_ms, int(time_budget_ms)))

    async def run(
        self,
        job_id: UUID,
        limit: int | None = None,
        time_budget_ms: int | None = None,
    ) -> RunResult:
        """
        Process a job until its queue is drained or the budget is spent.

        Args:
            job_id: Job UUID
            limit: Items claimed per iteration (1..max_claim_limit)
            time_budget_ms: Wall-clock budget of the pass

        Returns:
            RunResult with the refreshed job and pass counters

        Raises:
            JobNotFoundError: Job does not exist
            QueueOperationError: Claim or status store operation failed
        """
        claim_limit = self._clamp_limit(limit)
        budget_ms = self._clamp_budget(time_budget_ms)
        deadline = self._clock() + budget_ms / 1000

        async with self._session_factory() as session:
            queue = ImportQueueService(session, self._settings)
            job = await queue.get_job(job_id)
            if job.status == ImportJobStatus.COMPLETED:
                return RunResult(job=job, processed=0, retried=0, released=0, time_budget_ms=budget_ms)

            await queue.mark_started(job_id)
            await queue.requeue_stale(job_id)

            logger.info(
                "%s:run - Worker pass started",
                __name__,
                extra={"job_id": str(job_id), "limit": claim_limit, "time_budget_ms": budget_ms},
            )

            totals = {"processed": 0, "retried": 0, "released": 0, "unreported": 0}
            while self._remaining_seconds(deadline) > DEADLINE_MARGIN_SECONDS:
                items = await queue.claim(job_id, claim_limit)
                if not items:
                    break

                known: dict[str, KnownOutputs] = {}
                if job.existing_behavior == ExistingBehavior.SKIP:
                    items, known, skipped = await self._skip_already_enriched(session, queue, job, items)
                    totals["processed"] += skipped
                if not items:
                    continue

                outcome = await self._process_batch(job, items, known, deadline, totals["processed"])
                for key, value in outcome.items():
                    totals[key] += value
                if outcome["released"]:
                    break

            await queue.update_job_status(job_id)
            job = await queue.get_job(job_id)

        logger.info(
            "%s:run - Worker pass finished",
            __name__,
            extra={"job_id": str(job_id), "status": job.status.value, **totals},
        )
        return RunResult(job=job, time_budget_ms=budget_ms, **totals)

    def _remaining_seconds(self, deadline: float) -> float:
        return deadline - self._clock()

    async def _skip_already_enriched(
        self,
        session: AsyncSession,
        queue: ImportQueueService,
        job: ImportJobModel,
        items: list[ClaimedItem],
    ) -> tuple[list[ClaimedItem], dict[str, KnownOutputs], int]:
        """Bulk dedup for items carrying a product_id; skipped items are resolved here."""
        product_ids = [item.product_id for item in items if item.product_id]
        if not product_ids:
            return items, {}, 0

        with_text = with_captions = with_vectors = None
        if job.do_text_embedding:
            with_text = await downstream_crud.existing_for_sources(session, product_ids, [PRODUCT_JSON_SOURCE])
        if job.do_image_captions:
            with_captions = await downstream_crud.existing_for_sources(session, product_ids, CAPTION_TEXT_SOURCES)
        if job.do_image_vectors:
            with_vectors = await downstream_crud.existing_vectorized(session, product_ids)
        await session.commit()

        known: dict[str, KnownOutputs] = {}
        for product_id in product_ids:
            known[product_id] = KnownOutputs(
                text=None if with_text is None else product_id in with_text,
                captions=None if with_captions is None else product_id in with_captions,
                vectors=None if with_vectors is None else product_id in with_vectors,
            )

        def fully_enriched(outputs: KnownOutputs) -> bool:
            return all(value is not False for value in (outputs.text, outputs.captions, outputs.vectors))

        skip_ids = [item.id for item in items if item.product_id and fully_enriched(known[item.product_id])]
        if skip_ids:
            await queue.mark_skipped_bulk(job.id, skip_ids, reason="already enriched")
            logger.info(
                "%s:_skip_already_enriched - Items skipped by dedup gate",
                __name__,
                extra={"job_id": str(job.id), "skipped": len(skip_ids)},
            )
        skipped = set(skip_ids)
        return [item for item in items if item.id not in skipped], known, len(skip_ids)

    async def _process_batch(
        self,
        job: ImportJobModel,
        items: list[ClaimedItem],
        known: dict[str, KnownOutputs],
        deadline: float,
        processed_before: int,
    ) -> dict[str, int]:
        """
        Process claimed items concurrently; items not started in time are released.

        Every item task settles before the batch returns or raises, so no
        task outlives the pass.
        """
        semaphore = asyncio.Semaphore(self._settings.item_concurrency)
        heavy = job.do_image_captions or job.do_image_vectors
        counts = {"processed": 0, "retried": 0, "released": 0, "unreported": 0}
        unstarted: list[UUID] = []

        async def handle(item: ClaimedItem) -> None:
            async with semaphore:
                remaining_ms = self._remaining_seconds(deadline) * 1000
                defer_heavy = (
                    heavy
                    and remaining_ms < self._settings.heavy_work_min_remaining_ms
                    and processed_before + counts["processed"] > 0
                )
                if remaining_ms <= DEADLINE_MARGIN_SECONDS * 1000 or defer_heavy:
                    unstarted.append(item.id)
                    return
                outcome = await self._process_item(job, item, known.get(item.product_id or ""))
                counts[outcome] += 1

        results = await asyncio.gather(*(handle(item) for item in items), return_exceptions=True)

        if unstarted:
            async with self._session_factory() as session:
                queue = ImportQueueService(session, self._settings)
                counts["released"] = await queue.release_claimed(job.id, unstarted)
            logger.info(
                "%s:_process_batch - Unstarted items released",
                __name__,
                extra={"job_id": str(job.id), "released": counts["released"]},
            )

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            logger.error(
                "%s:_process_batch - Item tasks raised",
                __name__,
                extra={"job_id": str(job.id), "errors": len(errors)},
            )
            raise errors[0]
        return counts

    async def _process_item(
        self,
        job: ImportJobModel,
        item: ClaimedItem,
        known: KnownOutputs | None,
    ) -> str:
        """
        Run one item and report its outcome.

        The success report shares the transaction of the downstream writes,
        so a lost lease rolls those writes back.

        Returns:
            "processed" for success/skip/failure, "retried" for a scheduled retry,
            "unreported" when the outcome could not be stored
        """
        async with self._session_factory() as session:
            queue = ImportQueueService(session, self._settings)
            try:
                await queue.update_item_step(item.id, "enriching")

                prepared = await self._processor.prepare(session, job, item, known)
                if prepared is None:
                    await session.rollback()
                    await queue.mark_skipped(item.id, job.id, reason="already enriched", attempt=item.attempt_count)
                    return "processed"

                await self._processor.persist(session, job, prepared)
                applied = await import_item_crud.mark_success(session, item.id, job.id, attempt=item.attempt_count)
                if not applied:
                    await session.rollback()
                    logger.warning(
                        "%s:_process_item - Lease lost, result discarded",
                        __name__,
                        extra={"job_id": str(job.id), "item_id": str(item.id)},
                    )
                    return "processed"
                await session.commit()
                return "processed"
            except Exception as e:
                await session.rollback()
                return await self._report_error(queue, job, item, e)

    async def _report_error(
        self,
        queue: ImportQueueService,
        job: ImportJobModel,
        item: ClaimedItem,
        error: Exception,
    ) -> str:
        retryable, error_code = classify_retry(error)
        message = _error_message(error)
        context: dict[str, Any] = {
            "job_id": str(job.id),
            "item_id": str(item.id),
            "row_index": item.row_index,
            "attempt": item.attempt_count,
            "error_code": error_code,
        }

        try:
            if retryable and item.attempt_count < self._settings.max_retry_attempts:
                delay = calc_retry_after_seconds(item.attempt_count, self._settings.max_retry_delay_seconds)
                await queue.mark_retry(
                    item.id,
                    job.id,
                    message,
                    error_code,
                    delay,
                    attempt=item.attempt_count,
                )
                logger.warning(
                    "%s:_process_item - Item scheduled for retry: %s",
                    __name__,
                    message,
                    extra={**context, "retry_after_seconds": delay},
                )
                return "retried"

            await queue.mark_failure(
                item.id,
                job.id,
                message,
                error_code=error_code,
                attempt=item.attempt_count,
            )
        except QueueOperationError as report_error:
            # Item stays processing until requeue_stale reclaims the lease
            logger.error(
                "%s:_report_error - Outcome not recorded: %s",
                __name__,
                report_error.message,
                extra=context,
            )
            return "unreported"

        logger.error(
            "%s:_process_item - Item failed: %s",
            __name__,
            message,
            extra=context,
            exc_info=not isinstance(error, (ItemPayloadError, EnrichmentError)),
        )
        return "processed"
