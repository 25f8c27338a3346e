"""
Import queue configuration settings.

Batch sizes, lease timeouts, retry policy and worker pass limits for the
product import queue.

Dependencies: pydantic, pydantic_settings
System role: Queue tuning knobs shared by ingester, claim queue and worker
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from product_import.configs.base import BaseSettings


class QueueSettings(BaseSettings):
    """Import queue tuning."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMPORT_QUEUE_",
        case_sensitive=False,
        extra="ignore",
    )

    insert_batch_size: int = Field(
        default=1000,
        ge=1,
        description="Rows per multi-row INSERT when appending items",
    )
    downstream_delete_batch_size: int = Field(
        default=500,
        ge=1,
        description="Product ids per DELETE when cleaning downstream stores",
    )
    max_append_items: int = Field(
        default=2000,
        ge=1,
        description="Maximum items accepted by a single append API call",
    )

    stale_processing_seconds: int = Field(
        default=120,
        description="Lease timeout after which a processing item is reclaimed",
    )
    max_retry_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts after which a retryable error becomes terminal",
    )
    max_retry_delay_seconds: int = Field(
        default=60,
        ge=1,
        description="Upper bound of the exponential retry delay",
    )

    default_claim_limit: int = Field(default=5, description="Items claimed per loop iteration")
    max_claim_limit: int = Field(default=20, description="Upper bound for a requested claim limit")
    default_time_budget_ms: int = Field(default=10_000, description="Worker pass time budget")
    max_time_budget_ms: int = Field(default=25_000, description="Upper bound for a requested time budget")
    heavy_work_min_remaining_ms: int = Field(
        default=6000,
        description="Remaining budget below which image work is deferred to the next pass",
    )

    item_concurrency: int = Field(default=2, ge=1, le=6, description="Items processed concurrently")
    caption_concurrency: int = Field(default=4, ge=1, le=8, description="Concurrent caption calls per item")
    vectorize_concurrency: int = Field(default=2, ge=1, le=4, description="Concurrent vectorize calls per item")
