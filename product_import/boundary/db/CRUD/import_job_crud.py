"""
Import job CRUD operations.

Job creation, listing, policy updates, counter deltas and status
recomputation for ImportJobModel.

Counters are only ever changed with relative deltas (count = count + n)
so that concurrent outcome reporters never lose updates.

Dependencies: sqlalchemy, product_import.boundary.db.models
System role: Job persistence operations for the import queue
"""

from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import case, delete, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.base import utcnow
from product_import.boundary.db.CRUD.base_crud import BaseCRUD
from product_import.boundary.db.models.import_item_model import ImportItemModel, ImportItemStatus
from product_import.boundary.db.models.import_job_model import ImportJobModel, ImportJobStatus

COUNTER_COLUMNS = ("total_count", "invalid_count", "success_count", "failed_count", "skipped_count")


def _job_status_literal(status: ImportJobStatus):
    """Bind a job status through the column type so CASE branches persist enum values."""
    return literal(status, ImportJobModel.__table__.c.status.type)


class ImportJobCRUD(BaseCRUD[ImportJobModel]):
    """
    CRUD operations for ImportJobModel.

    Extends BaseCRUD with counter deltas and derived-status maintenance.
    """

    def __init__(self) -> None:
        """Initialize ImportJobCRUD with ImportJobModel."""
        super().__init__(ImportJobModel)

    async def list_recent(
        self,
        session: AsyncSession,
        limit: int = 20,
    ) -> Sequence[ImportJobModel]:
        """
        Retrieve the newest jobs first.

        Args:
            session: Async database session
            limit: Maximum number of jobs (clamped to 1..100)

        Returns:
            Sequence of ImportJobModels ordered by created_at desc
        """
        safe_limit = max(1, min(100, int(limit)))
        stmt = (
            select(ImportJobModel)
            .order_by(ImportJobModel.created_at.desc())
            .limit(safe_limit)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def increment_counters(
        self,
        session: AsyncSession,
        job_id: UUID,
        now: datetime | None = None,
        **deltas: int,
    ) -> None:
        """
        Apply relative deltas to job counters.

        Negative deltas are floored at zero so a counter can never go
        below 0 even if an operator requeues more than was counted.

        Args:
            session: Async database session
            job_id: Job UUID
            now: Timestamp for updated_at (defaults to current UTC time)
            **deltas: counter_name=delta pairs (see COUNTER_COLUMNS)

        Raises:
            ValueError: Unknown counter name
        """
        values = {}
        for name, delta in deltas.items():
            if name not in COUNTER_COLUMNS:
                raise ValueError(f"Unknown job counter: {name}")
            if not delta:
                continue
            column = getattr(ImportJobModel, name)
            if delta > 0:
                values[name] = column + delta
            else:
                values[name] = case((column + delta < 0, 0), else_=column + delta)
        if not values:
            return

        values["updated_at"] = now or utcnow()
        stmt = (
            update(ImportJobModel)
            .where(ImportJobModel.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    async def update_job_status(
        self,
        session: AsyncSession,
        job_id: UUID,
        now: datetime | None = None,
    ) -> ImportJobStatus | None:
        """
        Recompute the derived job status from its items.

        COMPLETED iff no item is pending or processing; otherwise PROCESSING
        when any item is leased, else PENDING. completed_at is stamped on
        the first completion and cleared when the job reopens.

        Args:
            session: Async database session
            job_id: Job UUID
            now: Timestamp for completed_at/updated_at

        Returns:
            New status, or None when the job does not exist
        """
        now = now or utcnow()
        has_open_items = (
            select(ImportItemModel.id)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.status.in_([ImportItemStatus.PENDING, ImportItemStatus.PROCESSING]),
            )
            .exists()
        )
        has_processing_items = (
            select(ImportItemModel.id)
            .where(
                ImportItemModel.job_id == job_id,
                ImportItemModel.status == ImportItemStatus.PROCESSING,
            )
            .exists()
        )

        stmt = (
            update(ImportJobModel)
            .where(ImportJobModel.id == job_id)
            .values(
                status=case(
                    (~has_open_items, _job_status_literal(ImportJobStatus.COMPLETED)),
                    (has_processing_items, _job_status_literal(ImportJobStatus.PROCESSING)),
                    else_=_job_status_literal(ImportJobStatus.PENDING),
                ),
                completed_at=case(
                    (~has_open_items, func.coalesce(ImportJobModel.completed_at, now)),
                    else_=None,
                ),
                updated_at=now,
            )
            .returning(ImportJobModel.status)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_started(
        self,
        session: AsyncSession,
        job_id: UUID,
        now: datetime | None = None,
    ) -> None:
        """
        Flag a pending job as processing when a worker pass begins.

        Args:
            session: Async database session
            job_id: Job UUID
            now: Timestamp for updated_at
        """
        stmt = (
            update(ImportJobModel)
            .where(
                ImportJobModel.id == job_id,
                ImportJobModel.status == ImportJobStatus.PENDING,
            )
            .values(status=ImportJobStatus.PROCESSING, updated_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)

    async def update_flags(
        self,
        session: AsyncSession,
        job_id: UUID,
        **flags,
    ) -> ImportJobModel | None:
        """
        Change policy fields; None values are left untouched.

        Args:
            session: Async database session
            job_id: Job UUID
            **flags: existing_behavior, do_text_embedding, do_image_captions,
                do_image_vectors, caption_image_input

        Returns:
            Updated ImportJobModel if found, None otherwise
        """
        values = {name: value for name, value in flags.items() if value is not None}
        if not values:
            return await self.get_by_id(session, job_id)
        return await self.update_by_id(session, job_id, **values)

    async def delete_job(self, session: AsyncSession, job_id: UUID) -> bool:
        """
        Delete a job together with its items.

        Items are removed explicitly so the cascade does not depend on
        the backend enforcing foreign keys.

        Args:
            session: Async database session
            job_id: Job UUID

        Returns:
            True if the job existed
        """
        await session.execute(delete(ImportItemModel).where(ImportItemModel.job_id == job_id))
        return await self.delete_by_id(session, job_id)


import_job_crud = ImportJobCRUD()
