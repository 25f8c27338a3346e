"""
Import job domain models and schemas.

Request/response schemas for job creation, item submission, worker runs
and operator actions.

Dependencies: pydantic
System role: Import queue API contracts
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

RequeueStatus = Literal["failed", "skipped", "success"]


class ImportItemInput(BaseModel):
    """One submitted row; camelCase keys are accepted as well."""

    model_config = ConfigDict(populate_by_name=True)

    row_index: int = Field(
        gt=0,
        validation_alias=AliasChoices("row_index", "rowIndex"),
        description="1-based position in the submission",
    )
    city_code: str | None = Field(default=None, validation_alias=AliasChoices("city_code", "cityCode"))
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    product_json: str = Field(default="", validation_alias=AliasChoices("product_json", "productJson"))
    status: Literal["pending", "failed"] = Field(
        default="pending",
        description="failed marks a row that already failed client-side validation",
    )
    error: str | None = Field(default=None, description="Validation message for failed rows")

    @field_validator("city_code", "product_id", "error", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("product_json", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return "" if value is None else value


class CreateImportJobRequest(BaseModel):
    """Request schema for creating a job, optionally with its first items."""

    model_config = ConfigDict(populate_by_name=True)

    existing_behavior: str | None = Field(
        default=None,
        validation_alias=AliasChoices("existing_behavior", "existingBehavior"),
        description="skip (default) or delete_then_insert",
    )
    do_text_embedding: bool | None = Field(
        default=None, validation_alias=AliasChoices("do_text_embedding", "doTextEmbedding")
    )
    do_image_captions: bool | None = Field(
        default=None, validation_alias=AliasChoices("do_image_captions", "doImageCaptions")
    )
    do_image_vectors: bool | None = Field(
        default=None, validation_alias=AliasChoices("do_image_vectors", "doImageVectors")
    )
    caption_image_input: str | None = Field(
        default=None,
        validation_alias=AliasChoices("caption_image_input", "captionImageInput"),
        description="url (default) or data_url",
    )
    items: list[ImportItemInput] = Field(default_factory=list)


class AppendItemsRequest(BaseModel):
    """Request schema for appending items to an existing job."""

    items: list[ImportItemInput]


class RunJobRequest(BaseModel):
    """Request schema for one worker pass."""

    model_config = ConfigDict(populate_by_name=True)

    limit: int | None = Field(default=None, description="Items per claim (1..20)")
    time_budget_ms: int | None = Field(
        default=None,
        validation_alias=AliasChoices("time_budget_ms", "timeBudgetMs"),
        description="Wall-clock budget of the pass (1000..25000)",
    )


class RequeueRequest(BaseModel):
    """Request schema for requeueing resolved items."""

    statuses: list[RequeueStatus] = Field(min_length=1)


class AddProcessingRequest(BaseModel):
    """Request schema for enabling additional steps and requeueing items."""

    model_config = ConfigDict(populate_by_name=True)

    do_text_embedding: bool = Field(
        default=False, validation_alias=AliasChoices("do_text_embedding", "doTextEmbedding")
    )
    do_image_captions: bool = Field(
        default=False, validation_alias=AliasChoices("do_image_captions", "doImageCaptions")
    )
    do_image_vectors: bool = Field(
        default=False, validation_alias=AliasChoices("do_image_vectors", "doImageVectors")
    )
    existing_behavior: str | None = Field(
        default=None, validation_alias=AliasChoices("existing_behavior", "existingBehavior")
    )
    caption_image_input: str | None = Field(
        default=None, validation_alias=AliasChoices("caption_image_input", "captionImageInput")
    )
    include_failed: bool = Field(default=False, validation_alias=AliasChoices("include_failed", "includeFailed"))
    include_skipped: bool = Field(default=True, validation_alias=AliasChoices("include_skipped", "includeSkipped"))
    include_success: bool = Field(default=True, validation_alias=AliasChoices("include_success", "includeSuccess"))


class SkipItemsRequest(BaseModel):
    """Request schema for skipping items in bulk."""

    model_config = ConfigDict(populate_by_name=True)

    item_ids: list[uuid.UUID] = Field(
        min_length=1,
        validation_alias=AliasChoices("item_ids", "itemIds"),
    )


class ReconcileRequest(BaseModel):
    """Request schema for reclaiming stale leases."""

    model_config = ConfigDict(populate_by_name=True)

    stale_seconds: int | None = Field(
        default=None,
        validation_alias=AliasChoices("stale_seconds", "staleSeconds"),
        description="Lease timeout, clamped to 30..86400",
    )


class ImportJobResponse(BaseModel):
    """Response schema for a job."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    total_count: int
    invalid_count: int
    success_count: int
    failed_count: int
    skipped_count: int
    processed_count: int
    existing_behavior: str
    do_text_embedding: bool
    do_image_captions: bool
    do_image_vectors: bool
    caption_image_input: str
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", "existing_behavior", "caption_image_input", mode="before")
    @classmethod
    def enum_value(cls, value):
        return getattr(value, "value", value)


class ImportItemResponse(BaseModel):
    """Response schema for an item preview."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    row_index: int
    city_code: str | None
    product_id: str | None
    status: str
    attempt_count: int
    next_retry_at: datetime | None
    claimed_at: datetime | None
    last_error: str | None
    error_code: str | None
    current_step: str | None
    current_step_detail: str | None
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def enum_value(cls, value):
        return getattr(value, "value", value)


class QueueStatsResponse(BaseModel):
    """Point-in-time queue counts of a job."""

    model_config = ConfigDict(from_attributes=True)

    pending_ready_count: int
    pending_delayed_count: int
    processing_count: int
    success_count: int
    failed_count: int
    skipped_count: int
    next_retry_at: datetime | None


class ImportJobDetailResponse(BaseModel):
    """Job with queue stats and item previews."""

    job: ImportJobResponse
    queue_stats: QueueStatsResponse
    failed_items: list[ImportItemResponse]
    processing_items: list[ImportItemResponse]


class AppendItemsResponse(BaseModel):
    """Result of an append call."""

    job_id: uuid.UUID
    inserted: int


class RunJobResponse(BaseModel):
    """Result of one worker pass."""

    job: ImportJobResponse
    processed: int
    retried: int
    released: int
    time_budget_ms: int
    unreported: int = 0


class RequeueResponse(BaseModel):
    """Items moved back to pending, per previous status."""

    requeued: dict[str, int]
    total: int
    job: ImportJobResponse


class SkipItemsResponse(BaseModel):
    """Result of a bulk skip."""

    skipped: int
    job: ImportJobResponse


class ReconcileResponse(BaseModel):
    """Result of a stale-lease reclaim."""

    requeued: int
    job: ImportJobResponse


class DownstreamDeleteResponse(BaseModel):
    """Rows removed from the downstream stores."""

    product_ids: int
    deleted_text: int
    deleted_images: int


class DeleteJobResponse(BaseModel):
    """Result of a job delete."""

    deleted: bool
    downstream: DownstreamDeleteResponse | None = None
