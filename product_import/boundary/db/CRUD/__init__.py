"""
CRUD operations for database models.

Exports base CRUD class and model-specific CRUD implementations
with pre-instantiated singletons for direct use.

Usage:
    from product_import.boundary.db.CRUD import import_job_crud, import_item_crud

    # Use singleton instances
    job = await import_job_crud.get_by_id(db, job_id)
    claimed = await import_item_crud.claim_pending(db, job_id, limit=5)
"""

from product_import.boundary.db.CRUD.base_crud import BaseCRUD
from product_import.boundary.db.CRUD.import_job_crud import ImportJobCRUD, import_job_crud
from product_import.boundary.db.CRUD.import_item_crud import (
    ClaimedItem,
    ImportItemCRUD,
    QueueStats,
    RequeueResult,
    import_item_crud,
)
from product_import.boundary.db.CRUD.downstream_crud import (
    DownstreamCRUD,
    DownstreamDeleteResult,
    downstream_crud,
)

__all__ = [
    "BaseCRUD",
    "ImportJobCRUD",
    "import_job_crud",
    "ImportItemCRUD",
    "import_item_crud",
    "ClaimedItem",
    "QueueStats",
    "RequeueResult",
    "DownstreamCRUD",
    "DownstreamDeleteResult",
    "downstream_crud",
]
