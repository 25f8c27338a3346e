"""
Import job ORM model.

One row per submitted batch of product records. Holds the per-job
enrichment policy and the outcome counters that concurrent workers
advance with relative-delta updates.

Dependencies: sqlalchemy, product_import.boundary.db.base
System role: Parent record of the import queue
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from product_import.boundary.db.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from product_import.boundary.db.models.import_item_model import ImportItemModel


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ImportJobStatus(str, enum.Enum):
    """
    Derived job status.

    PENDING: Items wait to be claimed, none in flight
    PROCESSING: At least one item is leased to a worker
    COMPLETED: No pending or processing item remains
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class ExistingBehavior(str, enum.Enum):
    """
    How to treat products that already have enrichment output.

    SKIP: Leave them alone when every enabled output already exists
    DELETE_THEN_INSERT: Delete the product's downstream rows, then re-enrich
    """

    SKIP = "skip"
    DELETE_THEN_INSERT = "delete_then_insert"


class CaptionImageInput(str, enum.Enum):
    """How images are handed to the caption model."""

    URL = "url"
    DATA_URL = "data_url"


class ImportJobModel(Base, UUIDMixin, TimestampMixin):
    """
    Import job ORM model.

    Attributes:
        id: UUID primary key (auto-generated)
        status: Derived status, recomputed by update_job_status
        total_count: Items appended so far
        invalid_count: Items that failed pre-validation at ingestion
        success_count / failed_count / skipped_count: Resolved item outcomes
        existing_behavior: Policy for products that already have output
        do_text_embedding / do_image_captions / do_image_vectors: Enabled steps
        caption_image_input: url or data_url
        completed_at: First time the job reached COMPLETED

    Invariant:
        success_count + failed_count + skipped_count <= total_count
    """

    __tablename__ = "import_jobs"

    status: Mapped[ImportJobStatus] = mapped_column(
        Enum(ImportJobStatus, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=ImportJobStatus.PENDING,
    )

    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invalid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    existing_behavior: Mapped[ExistingBehavior] = mapped_column(
        Enum(ExistingBehavior, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
        default=ExistingBehavior.SKIP,
    )
    do_text_embedding: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    do_image_captions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    do_image_vectors: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    caption_image_input: Mapped[CaptionImageInput] = mapped_column(
        Enum(CaptionImageInput, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=CaptionImageInput.URL,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items: Mapped[list["ImportItemModel"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    @property
    def processed_count(self) -> int:
        """Items with a resolved outcome."""
        return self.success_count + self.failed_count + self.skipped_count
