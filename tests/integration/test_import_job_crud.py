"""
Test suite for ImportJobCRUD database operations.

Tests counter deltas, derived status recomputation, policy updates and
job deletion against an in-memory SQLite database.

System role: Verification of job persistence for the import queue
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from product_import.boundary.db.CRUD.import_item_crud import import_item_crud
from product_import.boundary.db.CRUD.import_job_crud import ImportJobCRUD, import_job_crud
from product_import.boundary.db.models.import_item_model import ImportItemModel
from product_import.boundary.db.models.import_job_model import (
    CaptionImageInput,
    ExistingBehavior,
    ImportJobModel,
    ImportJobStatus,
)

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _create_job(session: AsyncSession, **policy) -> ImportJobModel:
    job = await import_job_crud.create(session, **policy)
    await session.commit()
    return job


class TestImportJobCRUDInit:
    """Test suite for ImportJobCRUD initialization."""

    def test_init_should_set_model_to_import_job_model(self) -> None:
        """Test ImportJobCRUD initializes with ImportJobModel."""
        crud = ImportJobCRUD()

        assert crud.model == ImportJobModel


class TestImportJobCRUDCreate:
    """Test suite for job creation defaults."""

    @pytest.mark.asyncio
    async def test_create_should_apply_defaults(self, test_async_db: AsyncSession) -> None:
        """Test a new job is pending with zero counters and all steps enabled."""
        # Act
        job = await _create_job(test_async_db)

        # Assert
        assert job.status == ImportJobStatus.PENDING
        assert job.total_count == 0
        assert job.processed_count == 0
        assert job.existing_behavior == ExistingBehavior.SKIP
        assert job.do_text_embedding and job.do_image_captions and job.do_image_vectors
        assert job.caption_image_input == CaptionImageInput.URL
        assert job.completed_at is None


class TestImportJobRelationships:
    """Test suite for the job/item relationship loading strategy."""

    def test_relationships_should_refuse_lazy_loads(self) -> None:
        assert ImportJobModel.items.property.lazy == "raise"
        assert ImportItemModel.job.property.lazy == "raise"

    @pytest.mark.asyncio
    async def test_items_should_never_load_implicitly(self, test_async_db: AsyncSession) -> None:
        """Test touching job.items fails fast instead of emitting a hidden query."""
        # Arrange
        job = await _create_job(test_async_db)
        test_async_db.expunge_all()
        loaded = await import_job_crud.get_by_id(test_async_db, job.id)

        # Act / Assert
        with pytest.raises(InvalidRequestError):
            loaded.items


class TestImportJobCRUDIncrementCounters:
    """Test suite for ImportJobCRUD.increment_counters()."""

    @pytest.mark.asyncio
    async def test_increment_counters_should_apply_relative_deltas(self, test_async_db: AsyncSession) -> None:
        """Test deltas add to the stored counters."""
        # Arrange
        job = await _create_job(test_async_db)

        # Act
        await import_job_crud.increment_counters(test_async_db, job.id, total_count=3, failed_count=1)
        await import_job_crud.increment_counters(test_async_db, job.id, total_count=2, success_count=1)
        await test_async_db.commit()

        # Assert
        refreshed = await import_job_crud.get_by_id(test_async_db, job.id)
        assert refreshed.total_count == 5
        assert refreshed.failed_count == 1
        assert refreshed.success_count == 1

    @pytest.mark.asyncio
    async def test_increment_counters_should_floor_negative_deltas_at_zero(self, test_async_db: AsyncSession) -> None:
        """Test a counter never goes below zero."""
        # Arrange
        job = await _create_job(test_async_db)
        await import_job_crud.increment_counters(test_async_db, job.id, skipped_count=1)

        # Act
        await import_job_crud.increment_counters(test_async_db, job.id, skipped_count=-5)
        await test_async_db.commit()

        # Assert
        refreshed = await import_job_crud.get_by_id(test_async_db, job.id)
        assert refreshed.skipped_count == 0

    @pytest.mark.asyncio
    async def test_increment_counters_should_reject_unknown_counter(self, test_async_db: AsyncSession) -> None:
        """Test an unknown counter name raises ValueError."""
        job = await _create_job(test_async_db)

        with pytest.raises(ValueError, match="Unknown job counter"):
            await import_job_crud.increment_counters(test_async_db, job.id, attempt_count=1)


class TestImportJobCRUDUpdateJobStatus:
    """Test suite for ImportJobCRUD.update_job_status()."""

    @pytest.mark.asyncio
    async def test_update_job_status_should_complete_job_without_items(self, test_async_db: AsyncSession) -> None:
        """Test a job with no open items is completed and stamped."""
        # Arrange
        job = await _create_job(test_async_db)

        # Act
        status = await import_job_crud.update_job_status(test_async_db, job.id, now=NOW)
        await test_async_db.commit()

        # Assert
        assert status == ImportJobStatus.COMPLETED
        refreshed = await import_job_crud.get_by_id(test_async_db, job.id)
        assert refreshed.status == ImportJobStatus.COMPLETED
        assert refreshed.completed_at is not None

    @pytest.mark.asyncio
    async def test_update_job_status_should_follow_item_states(
        self, test_async_db: AsyncSession, make_rows
    ) -> None:
        """Test pending -> processing -> completed as items are claimed and resolved."""
        # Arrange
        job = await _create_job(test_async_db)
        await import_item_crud.insert_batch(test_async_db, job.id, make_rows("A"), now=NOW)

        # Act / Assert: pending item
        assert await import_job_crud.update_job_status(test_async_db, job.id, now=NOW) == ImportJobStatus.PENDING

        # Act / Assert: leased item
        [item] = await import_item_crud.claim_pending(test_async_db, job.id, 1, now=NOW)
        assert await import_job_crud.update_job_status(test_async_db, job.id, now=NOW) == ImportJobStatus.PROCESSING

        # Act / Assert: resolved item
        await import_item_crud.mark_success(test_async_db, item.id, job.id, now=NOW)
        assert await import_job_crud.update_job_status(test_async_db, job.id, now=NOW) == ImportJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_job_status_should_keep_first_completion_time(self, test_async_db: AsyncSession) -> None:
        """Test completed_at is not moved by later recomputations."""
        # Arrange
        job = await _create_job(test_async_db)
        await import_job_crud.update_job_status(test_async_db, job.id, now=NOW)
        await test_async_db.commit()
        first = (await import_job_crud.get_by_id(test_async_db, job.id)).completed_at

        # Act
        await import_job_crud.update_job_status(test_async_db, job.id, now=NOW + timedelta(hours=1))
        await test_async_db.commit()

        # Assert
        assert (await import_job_crud.get_by_id(test_async_db, job.id)).completed_at == first

    @pytest.mark.asyncio
    async def test_update_job_status_should_return_none_for_missing_job(self, test_async_db: AsyncSession) -> None:
        """Test a missing job yields None."""
        assert await import_job_crud.update_job_status(test_async_db, uuid.uuid4()) is None


class TestImportJobCRUDFlagsAndListing:
    """Test suite for policy updates, listing and deletion."""

    @pytest.mark.asyncio
    async def test_mark_started_should_only_move_pending_jobs(self, test_async_db: AsyncSession) -> None:
        """Test mark_started flips pending to processing and leaves completed jobs alone."""
        # Arrange
        pending = await _create_job(test_async_db)
        completed = await _create_job(test_async_db)
        await import_job_crud.update_job_status(test_async_db, completed.id, now=NOW)

        # Act
        await import_job_crud.mark_started(test_async_db, pending.id)
        await import_job_crud.mark_started(test_async_db, completed.id)
        await test_async_db.commit()

        # Assert
        assert (await import_job_crud.get_by_id(test_async_db, pending.id)).status == ImportJobStatus.PROCESSING
        assert (await import_job_crud.get_by_id(test_async_db, completed.id)).status == ImportJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_flags_should_ignore_none_values(self, test_async_db: AsyncSession) -> None:
        """Test only given policy fields change."""
        # Arrange
        job = await _create_job(test_async_db, do_image_captions=False)

        # Act
        updated = await import_job_crud.update_flags(
            test_async_db,
            job.id,
            do_image_captions=True,
            do_image_vectors=None,
            existing_behavior=ExistingBehavior.DELETE_THEN_INSERT,
        )
        await test_async_db.commit()

        # Assert
        assert updated.do_image_captions is True
        assert updated.do_image_vectors is True
        assert updated.existing_behavior == ExistingBehavior.DELETE_THEN_INSERT

    @pytest.mark.asyncio
    async def test_list_recent_should_return_newest_first(self, test_async_db: AsyncSession) -> None:
        """Test jobs are ordered by created_at descending."""
        # Arrange
        older = await _create_job(test_async_db, created_at=NOW - timedelta(days=1))
        newer = await _create_job(test_async_db, created_at=NOW)

        # Act
        jobs = await import_job_crud.list_recent(test_async_db, limit=10)

        # Assert
        assert [job.id for job in jobs] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_delete_job_should_remove_items(self, test_async_db: AsyncSession, make_rows) -> None:
        """Test deleting a job removes its items as well."""
        # Arrange
        job = await _create_job(test_async_db)
        await import_item_crud.insert_batch(test_async_db, job.id, make_rows("A", "B"))
        await test_async_db.commit()

        # Act
        deleted = await import_job_crud.delete_job(test_async_db, job.id)
        await test_async_db.commit()

        # Assert
        assert deleted is True
        assert await import_job_crud.get_by_id(test_async_db, job.id) is None
        assert list(await import_item_crud.items_preview(test_async_db, job.id)) == []

    @pytest.mark.asyncio
    async def test_delete_job_should_return_false_for_missing_job(self, test_async_db: AsyncSession) -> None:
        """Test deleting an unknown job reports False."""
        assert await import_job_crud.delete_job(test_async_db, uuid.uuid4()) is False
