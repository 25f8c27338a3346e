"""
Import item ORM model.

One row per source record of a job, tracked through its own state machine:
pending -> processing -> success | failed | skipped, with processing ->
pending for scheduled retries, releases and stale reclaims.

Dependencies: sqlalchemy, product_import.boundary.db.base
System role: Unit of work of the import queue
"""

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from product_import.boundary.db.base import Base, TimestampMixin, UUIDMixin
from product_import.boundary.db.models.import_job_model import _enum_values

if TYPE_CHECKING:
    from product_import.boundary.db.models.import_job_model import ImportJobModel


class ImportItemStatus(str, enum.Enum):
    """
    Item lifecycle states.

    PENDING: Waiting to be claimed (possibly delayed by next_retry_at)
    PROCESSING: Leased to a worker since claimed_at
    SUCCESS: Enrichment output committed
    FAILED: Terminal failure; needs an operator requeue
    SKIPPED: Output already existed under the skip policy
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_ITEM_STATUSES = (
    ImportItemStatus.SUCCESS,
    ImportItemStatus.FAILED,
    ImportItemStatus.SKIPPED,
)


class ImportItemModel(Base, UUIDMixin, TimestampMixin):
    """
    Import item ORM model.

    Attributes:
        job_id: Owning ImportJob (cascade delete)
        row_index: 1-based position in the source submission
        city_code: Optional region code carried into downstream rows
        product_id: Dedup/merge key for downstream stores
        product_json: Raw product JSON text (empty for pre-failed rows)
        status: Current state
        attempt_count: Incremented on every claim, never reset
        next_retry_at: Earliest time a pending item may be claimed (null = now)
        claimed_at: Lease start; always set while PROCESSING
        last_error / error_code: Most recent failure description and classification
        current_step / current_step_detail: In-flight progress for operators
    """

    __tablename__ = "import_items"

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    city_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_json: Mapped[str] = mapped_column(Text, nullable=False, default="")

    status: Mapped[ImportItemStatus] = mapped_column(
        Enum(ImportItemStatus, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=ImportItemStatus.PENDING,
    )

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    current_step: Mapped[str | None] = mapped_column(String(64), nullable=True)
    current_step_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    job: Mapped["ImportJobModel"] = relationship(back_populates="items", lazy="raise")

    __table_args__ = (
        Index("ix_import_items_job_status_row", "job_id", "status", "row_index"),
        Index("ix_import_items_job_status_retry", "job_id", "status", "next_retry_at", "row_index"),
    )
