"""
Database boundary layer: ORM models, CRUD operations, and connection management.

Exports:
  - Base, UUIDMixin, TimestampMixin: Model building blocks
  - get_engine(): Sync engine for schema management
  - get_async_engine(), get_async_session_factory(), get_async_db(): Async connection management
  - ImportJobModel, ImportItemModel: Queue entities
  - ProductTextEmbeddingModel, ProductImageVectorModel: Downstream stores
  - import_job_crud, import_item_crud, downstream_crud: CRUD operation singletons

Dependencies: sqlalchemy, pgvector, product_import.configs
System role: Database adapter providing the durable import queue and the
enriched product stores.
"""

from product_import.boundary.db.base import Base, TimestampMixin, UUIDMixin, utcnow
from product_import.boundary.db.connection import (
    get_engine,
    get_async_db,
    get_async_engine,
    get_async_session_factory,
)
from product_import.boundary.db.models import (
    CaptionImageInput,
    ExistingBehavior,
    ImportItemModel,
    ImportItemStatus,
    ImportJobModel,
    ImportJobStatus,
    ProductImageVectorModel,
    ProductTextEmbeddingModel,
)
from product_import.boundary.db.CRUD import (
    BaseCRUD,
    ImportJobCRUD,
    ImportItemCRUD,
    DownstreamCRUD,
    import_job_crud,
    import_item_crud,
    downstream_crud,
)

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "utcnow",
    # Connection
    "get_engine",
    "get_async_db",
    "get_async_engine",
    "get_async_session_factory",
    # Models
    "CaptionImageInput",
    "ExistingBehavior",
    "ImportItemModel",
    "ImportItemStatus",
    "ImportJobModel",
    "ImportJobStatus",
    "ProductImageVectorModel",
    "ProductTextEmbeddingModel",
    # CRUD classes
    "BaseCRUD",
    "ImportJobCRUD",
    "ImportItemCRUD",
    "DownstreamCRUD",
    # CRUD singletons
    "import_job_crud",
    "import_item_crud",
    "downstream_crud",
]
