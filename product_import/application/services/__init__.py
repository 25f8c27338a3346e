"""Service orchestrators."""

from .import_queue_service import ImportQueueService
from .import_runner import ImportRunner, RunResult, calc_retry_after_seconds, classify_retry
from .product_processor import ProductProcessor

__all__ = [
    "ImportQueueService",
    "ImportRunner",
    "ProductProcessor",
    "RunResult",
    "calc_retry_after_seconds",
    "classify_retry",
]
