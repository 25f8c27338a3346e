"""
Import item CRUD operations.

Batched insertion, the claim/lease queue, outcome reporting, stale
reclamation, bulk requeue/skip and queue statistics for ImportItemModel.

Every status transition is a guarded UPDATE (WHERE status = ...) so that
a late or duplicate report can never move an item twice; job counters are
only touched when the guarded UPDATE actually changed a row.

Dependencies: sqlalchemy, product_import.boundary.db.models
System role: Work queue persistence for the import pipeline
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, case, func, insert, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.base import utcnow
from product_import.boundary.db.CRUD.base_crud import BaseCRUD
from product_import.boundary.db.CRUD.import_job_crud import import_job_crud
from product_import.boundary.db.models.import_item_model import ImportItemModel, ImportItemStatus

STALE_PROCESSING_MARKER = "stale_processing"
MIN_STALE_SECONDS = 30
MAX_STALE_SECONDS = 86400
MAX_ERROR_LENGTH = 1000

# Counter advanced when an item resolves into the given status
_OUTCOME_COUNTERS = {
    ImportItemStatus.SUCCESS: "success_count",
    ImportItemStatus.FAILED: "failed_count",
    ImportItemStatus.SKIPPED: "skipped_count",
}


@dataclass(frozen=True)
class ClaimedItem:
    """Snapshot of an item leased to a worker by claim_pending."""

    id: UUID
    job_id: UUID
    row_index: int
    city_code: str | None
    product_id: str | None
    product_json: str
    attempt_count: int


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time snapshot of a job's queue."""

    pending_ready_count: int = 0
    pending_delayed_count: int = 0
    processing_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    next_retry_at: datetime | None = None

    @property
    def open_count(self) -> int:
        return self.pending_ready_count + self.pending_delayed_count + self.processing_count


@dataclass
class RequeueResult:
    """Number of items moved back to pending, per previous status."""

    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def clamp_stale_seconds(stale_seconds: int) -> int:
    """Clamp a lease timeout to the supported range."""
    return max(MIN_STALE_SECONDS, min(MAX_STALE_SECONDS, int(stale_seconds)))


def trim_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_ERROR_LENGTH]


class ImportItemCRUD(BaseCRUD[ImportItemModel]):
    """
    CRUD operations for ImportItemModel.

    State machine:
        pending -> processing              (claim_pending)
        processing -> success|failed|skipped (mark_success/mark_failure/mark_skipped)
        processing -> pending              (mark_retry, release_claimed, requeue_stale)
        pending|processing -> skipped      (mark_skipped_bulk)
        success|failed|skipped -> pending  (requeue_items)
    """

    def __init__(self) -> None:
        """Initialize ImportItemCRUD with ImportItemModel."""
        super().__init__(ImportItemModel)

    async def insert_batch(
        self,
        session: AsyncSession,
        job_id: UUID,
        rows: Sequence[dict[str, Any]],
        now: datetime | None = None,
    ) -> int:
        """
        Insert one batch of items with a single multi-row INSERT.

        Rows carry row_index, city_code, product_id, product_json and
        optionally status=failed plus last_error for rows that failed
        validation at ingestion. total_count grows by the batch size,
        invalid_count and failed_count by the number of pre-failed rows.

        Args:
            session: Async database session
            job_id: Owning job UUID
            rows: Validated item rows
            now: Timestamp for created_at/updated_at

        Returns:
            Number of rows inserted
        """
        if not rows:
            return 0
        now = now or utcnow()

        params = []
        pre_failed = 0
        for row in rows:
            status = ImportItemStatus(row.get("status") or ImportItemStatus.PENDING)
            if status == ImportItemStatus.FAILED:
                pre_failed += 1
            elif status != ImportItemStatus.PENDING:
                raise ValueError(f"Items can only be appended as pending or failed, got {status.value}")
            params.append(
                {
                    "job_id": job_id,
                    "row_index": row["row_index"],
                    "city_code": row.get("city_code"),
                    "product_id": row.get("product_id"),
                    "product_json": row.get("product_json") or "",
                    "status": status,
                    "attempt_count": 0,
                    "last_error": trim_error(row.get("last_error")),
                    "error_code": "invalid_row" if status == ImportItemStatus.FAILED else None,
                    "created_at": now,
                    "updated_at": now,
                }
            )

        await session.execute(insert(ImportItemModel), params)
        await import_job_crud.increment_counters(
            session,
            job_id,
            now=now,
            total_count=len(params),
            invalid_count=pre_failed,
            failed_count=pre_failed,
        )
        return len(params)

    async def claim_pending(
        self,
        session: AsyncSession,
        job_id: UUID,
        limit: int,
        now: datetime | None = None,
    ) -> list[ClaimedItem]:
        """
        Lease up to `limit` eligible pending items of a job.

        Eligible rows are locked with FOR UPDATE SKIP LOCKED so concurrent
        claimers partition the queue instead of blocking; the follow-up
        UPDATE repeats the status = pending guard so a row can never be
        leased twice on back-ends without row locks. An empty result
        means nothing was eligible, never that another caller won a race.

        Args:
            session: Async database session
            job_id: Job UUID
            limit: Maximum number of items to lease
            now: Lease timestamp

        Returns:
            Claimed items ordered by row_index (attempt_count already incremented)
        """
        if limit <= 0:
            return []
        now = now or utcnow()

        claimed: list[ClaimedItem] = []
        tried: set[UUID] = set()
        # Without row locks concurrent callers can select the same candidates;
        # losers of the guarded UPDATE re-select past the ids already tried.
        while len(claimed) < limit:
            eligible = (
                select(ImportItemModel.id)
                .where(
                    ImportItemModel.job_id == job_id,
                    ImportItemModel.status == ImportItemStatus.PENDING,
                    or_(ImportItemModel.next_retry_at.is_(None), ImportItemModel.next_retry_at <= now),
                )
                .order_by(ImportItemModel.row_index)
                .limit(limit - len(claimed))
                .with_for_update(skip_locked=True)
            )
            if tried:
                eligible = eligible.where(ImportItemModel.id.not_in(tried))
            ids = (await session.execute(eligible)).scalars().all()
            if not ids:
                break
            tried.update(ids)

            stmt = (
                update(ImportItemModel)
                .where(
                    ImportItemModel.id.in_(ids),
                    ImportItemModel.status == ImportItemStatus.PENDING,
                )
                .values(
                    status=ImportItemStatus.PROCESSING,
                    claimed_at=now,
                    attempt_count=ImportItemModel.attempt_count + 1,
                    current_step="claimed",
                    current_step_detail=None,
                    updated_at=now,
                )
                .returning(
                    ImportItemModel.id,
                    ImportItemModel.job_id,
                    ImportItemModel.row_index,
                    ImportItemModel.city_code,
                    ImportItemModel.product_id,
                    ImportItemModel.product_json,
                    ImportItemModel.attempt_count,
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            claimed.extend(ClaimedItem(**row._mapping) for row in result.all())
        return sorted(claimed, key=lambda item: item.row_index)

    async def _resolve(
        self,
        session: AsyncSession,
        item_id: UUID,
        job_id: UUID,
        status: ImportItemStatus,
        attempt: int | None,
        now: datetime | None,
        **values: Any,
    ) -> bool:
        """Move a processing item to a terminal status and bump the matching counter."""
        now = now or utcnow()
        conditions = [
            ImportItemModel.id == item_id,
            ImportItemModel.job_id == job_id,
            ImportItemModel.status == ImportItemStatus.PROCESSING,
        ]
        if attempt is not None:
            conditions.append(ImportItemModel.attempt_count == attempt)

        stmt = (
            update(ImportItemModel)
            .where(*conditions)
            .values(
                status=status,
                claimed_at=None,
                next_retry_at=None,
                updated_at=now,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            return False

        await import_job_crud.increment_counters(session, job_id, now=now, **{_OUTCOME_COUNTERS[status]: 1})
        return True

    async def mark_success(
        self,
        session: AsyncSession,
        item_id: UUID,
        job_id: UUID,
        attempt: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Resolve a processing item as success.

        Returns:
            True if the item transitioned, False for a late/duplicate report
        """
        return await self._resolve(
            session,
            item_id,
            job_id,
            ImportItemStatus.SUCCESS,
            attempt,
            now,
            last_error=None,
            error_code=None,
            current_step="done",
            current_step_detail=None,
        )

    async def mark_failure(
        self,
        session: AsyncSession,
        item_id: UUID,
        job_id: UUID,
        error: str,
        error_code: str | None = None,
        attempt: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Resolve a processing item as failed (terminal until requeued).

        Returns:
            True if the item transitioned, False for a late/duplicate report
        """
        return await self._resolve(
            session,
            item_id,
            job_id,
            ImportItemStatus.FAILED,
            attempt,
            now,
            last_error=trim_error(error),
            error_code=error_code,
            current_step="failed",
        )

    async def mark_skipped(
        self,
        session: AsyncSession,
        item_id: UUID,
        job_id: UUID,
        reason: str | None = None,
        attempt: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Resolve a processing item as skipped.

        Returns:
            True if the item transitioned, False for a late/duplicate report
        """
        return await self._resolve(
            session,
            item_id,
            job_id,
            ImportItemStatus.SKIPPED,
            attempt,
            now,
            current_step="skipped",
            current_step_detail=reason,
        )

    async def mark_retry(
        self,
        session: AsyncSession,
        item_id: UUID,
        job_id: UUID,
        error: str,
        error_code: str | None,
        retry_after_seconds: int,
        attempt: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Return a processing item to pending, eligible again after a delay.

        No counter changes; attempt_count keeps the attempt that failed.

        Returns:
            True if the item transitioned
        """
        now = now or utcnow()
        conditions = [
            ImportItemModel.id == item_id,
            ImportItemModel.job_id == job_id,
            ImportItemModel.status == ImportItemStatus.PROCESSING,
        ]
        if attempt is not None:
            conditions.append(ImportItemModel.attempt_count == attempt)

        stmt = (
            update(ImportItemModel)
            .where(*conditions)
            .values(
                status=ImportItemStatus.PENDING,
                claimed_at=None,
                next_retry_at=now + timedelta(seconds=max(0, retry_after_seconds)),
                last_error=trim_error(error),
                error_code=error_code,
                current_step="retry_scheduled",
                current_step_detail=f"retry in {retry_after_seconds}s",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def release_claimed(
        self,
        session: AsyncSession,
        job_id: UUID,
        item_ids: Iterable[UUID],
        now: datetime | None = None,
    ) -> int:
        """
        Hand back leased items a worker never started.

        The attempt increment of the claim is undone so that releasing does
        not count against the retry budget.

        Returns:
            Number of items returned to pending
        """
        ids = list(set(item_ids))
        if not ids:
            return 0
        now = now or utcnow()

        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.id.in_(ids),
                ImportItemModel.status == ImportItemStatus.PROCESSING,
            )
            .values(
                status=ImportItemStatus.PENDING,
                claimed_at=None,
                attempt_count=case(
                    (ImportItemModel.attempt_count > 0, ImportItemModel.attempt_count - 1),
                    else_=0,
                ),
                current_step="released",
                current_step_detail=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def requeue_stale(
        self,
        session: AsyncSession,
        job_id: UUID,
        stale_seconds: int,
        now: datetime | None = None,
    ) -> int:
        """
        Reclaim items whose lease is older than stale_seconds.

        attempt_count is kept so a crashing item still exhausts its retry
        budget. Safe to run repeatedly and concurrently with claims: only
        rows still processing with an old claimed_at match.

        Args:
            session: Async database session
            job_id: Job UUID
            stale_seconds: Lease timeout, clamped to [30, 86400]
            now: Reference time

        Returns:
            Number of items moved back to pending
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=clamp_stale_seconds(stale_seconds))

        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.status == ImportItemStatus.PROCESSING,
                or_(ImportItemModel.claimed_at.is_(None), ImportItemModel.claimed_at < cutoff),
            )
            .values(
                status=ImportItemStatus.PENDING,
                claimed_at=None,
                last_error=case(
                    (ImportItemModel.last_error.is_(None), literal(STALE_PROCESSING_MARKER)),
                    else_=ImportItemModel.last_error.concat(f"; {STALE_PROCESSING_MARKER}"),
                ),
                error_code=STALE_PROCESSING_MARKER,
                current_step="stale_requeued",
                current_step_detail=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def requeue_items(
        self,
        session: AsyncSession,
        job_id: UUID,
        statuses: Iterable[ImportItemStatus | str],
        now: datetime | None = None,
    ) -> RequeueResult:
        """
        Move resolved items back to pending and reopen the job.

        One UPDATE per previous status so the matching counter can be
        decremented by exactly the number of rows it moved.

        Args:
            session: Async database session
            job_id: Job UUID
            statuses: Any of success, failed, skipped

        Returns:
            RequeueResult with per-status counts

        Raises:
            ValueError: A non-terminal status was requested
        """
        now = now or utcnow()
        requested = []
        for status in statuses:
            status = ImportItemStatus(status)
            if status not in _OUTCOME_COUNTERS:
                raise ValueError(f"Cannot requeue items in status {status.value}")
            if status not in requested:
                requested.append(status)

        outcome = RequeueResult()
        deltas: dict[str, int] = {}
        for status in requested:
            stmt = (
                update(ImportItemModel)
                .where(
                    ImportItemModel.job_id == job_id,
                    ImportItemModel.status == status,
                )
                .values(
                    status=ImportItemStatus.PENDING,
                    last_error=None,
                    error_code=None,
                    next_retry_at=None,
                    claimed_at=None,
                    current_step=None,
                    current_step_detail=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            outcome.counts[status.value] = result.rowcount
            if result.rowcount:
                deltas[_OUTCOME_COUNTERS[status]] = -result.rowcount

        if deltas:
            await import_job_crud.increment_counters(session, job_id, now=now, **deltas)
            await import_job_crud.update_job_status(session, job_id, now=now)
        return outcome

    async def mark_skipped_bulk(
        self,
        session: AsyncSession,
        job_id: UUID,
        item_ids: Iterable[UUID],
        reason: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Skip every listed item that is still pending or processing.

        Items already resolved are left untouched, so repeating the call
        never double counts.

        Returns:
            Number of items that transitioned to skipped
        """
        ids = list(set(item_ids))
        if not ids:
            return 0
        now = now or utcnow()

        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.id.in_(ids),
                ImportItemModel.status.in_([ImportItemStatus.PENDING, ImportItemStatus.PROCESSING]),
            )
            .values(
                status=ImportItemStatus.SKIPPED,
                claimed_at=None,
                next_retry_at=None,
                current_step="skipped",
                current_step_detail=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        skipped = result.rowcount
        if skipped:
            await import_job_crud.increment_counters(session, job_id, now=now, skipped_count=skipped)
        return skipped

    async def queue_stats(
        self,
        session: AsyncSession,
        job_id: UUID,
        now: datetime | None = None,
    ) -> QueueStats:
        """
        Count a job's items per queue state in one aggregate query.

        Returns:
            QueueStats snapshot; next_retry_at is the earliest future retry
        """
        now = now or utcnow()
        status = ImportItemModel.status
        retry_at = ImportItemModel.next_retry_at
        ready = and_(status == ImportItemStatus.PENDING, or_(retry_at.is_(None), retry_at <= now))
        delayed = and_(status == ImportItemStatus.PENDING, retry_at > now)

        stmt = select(
            func.count().filter(ready).label("pending_ready_count"),
            func.count().filter(delayed).label("pending_delayed_count"),
            func.count().filter(status == ImportItemStatus.PROCESSING).label("processing_count"),
            func.count().filter(status == ImportItemStatus.SUCCESS).label("success_count"),
            func.count().filter(status == ImportItemStatus.FAILED).label("failed_count"),
            func.count().filter(status == ImportItemStatus.SKIPPED).label("skipped_count"),
            func.min(retry_at).filter(delayed).label("next_retry_at"),
        ).where(ImportItemModel.job_id == job_id)

        row = (await session.execute(stmt)).one()
        mapping = row._mapping
        return QueueStats(
            pending_ready_count=mapping["pending_ready_count"] or 0,
            pending_delayed_count=mapping["pending_delayed_count"] or 0,
            processing_count=mapping["processing_count"] or 0,
            success_count=mapping["success_count"] or 0,
            failed_count=mapping["failed_count"] or 0,
            skipped_count=mapping["skipped_count"] or 0,
            next_retry_at=mapping["next_retry_at"],
        )

    async def failed_items(
        self,
        session: AsyncSession,
        job_id: UUID,
        limit: int = 20,
    ) -> Sequence[ImportItemModel]:
        """Most recently failed items of a job."""
        stmt = (
            select(ImportItemModel)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.status == ImportItemStatus.FAILED,
            )
            .order_by(ImportItemModel.updated_at.desc(), ImportItemModel.row_index)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def processing_items(
        self,
        session: AsyncSession,
        job_id: UUID,
        limit: int = 20,
    ) -> Sequence[ImportItemModel]:
        """In-flight items of a job, oldest lease first."""
        stmt = (
            select(ImportItemModel)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.status == ImportItemStatus.PROCESSING,
            )
            .order_by(ImportItemModel.claimed_at, ImportItemModel.row_index)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def items_preview(
        self,
        session: AsyncSession,
        job_id: UUID,
        limit: int = 50,
        status: ImportItemStatus | None = None,
    ) -> Sequence[ImportItemModel]:
        """First items of a job by row_index, optionally filtered by status."""
        stmt = select(ImportItemModel).where(ImportItemModel.job_id == job_id)
        if status is not None:
            stmt = stmt.where(ImportItemModel.status == status)
        stmt = stmt.order_by(ImportItemModel.row_index).limit(limit).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def distinct_product_ids(self, session: AsyncSession, job_id: UUID) -> list[str]:
        """Distinct non-null product ids referenced by a job's items."""
        stmt = (
            select(ImportItemModel.product_id)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.product_id.is_not(None),
            )
            .distinct()
        )
        result = await session.execute(stmt)
        return [product_id for product_id in result.scalars().all() if product_id]

    async def update_item_step(
        self,
        session: AsyncSession,
        item_id: UUID,
        step: str,
        detail: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Record in-flight progress of a processing item."""
        stmt = (
            update(ImportItemModel)
            .where(
                ImportItemModel.id == item_id,
                ImportItemModel.status == ImportItemStatus.PROCESSING,
            )
            .values(current_step=step, current_step_detail=detail, updated_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)


import_item_crud = ImportItemCRUD()
