"""
Database models package.

Exports:
  - ImportJobModel and its enums (ImportJobStatus, ExistingBehavior, CaptionImageInput)
  - ImportItemModel, ImportItemStatus
  - ProductTextEmbeddingModel, ProductImageVectorModel: downstream stores

Dependencies: sqlalchemy, product_import.boundary.db.base
System role: Database model definitions for the import queue
"""

from product_import.boundary.db.models.import_job_model import (
    CaptionImageInput,
    ExistingBehavior,
    ImportJobModel,
    ImportJobStatus,
)
from product_import.boundary.db.models.import_item_model import (
    TERMINAL_ITEM_STATUSES,
    ImportItemModel,
    ImportItemStatus,
)
from product_import.boundary.db.models.product_text_embedding_model import (
    CAPTION_TEXT_SOURCES,
    PRODUCT_JSON_SOURCE,
    ProductTextEmbeddingModel,
)
from product_import.boundary.db.models.product_image_vector_model import ProductImageVectorModel

__all__ = [
    "CAPTION_TEXT_SOURCES",
    "PRODUCT_JSON_SOURCE",
    "TERMINAL_ITEM_STATUSES",
    "CaptionImageInput",
    "ExistingBehavior",
    "ImportItemModel",
    "ImportItemStatus",
    "ImportJobModel",
    "ImportJobStatus",
    "ProductImageVectorModel",
    "ProductTextEmbeddingModel",
]
