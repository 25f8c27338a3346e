"""API routers."""

from .health import router as health_router
from .import_jobs import router as import_jobs_router

__all__ = [
    "health_router",
    "import_jobs_router",
]
