"""API-specific dependencies."""

# Re-export common dependencies
from .dependencies import (
    get_import_queue_service,
    get_import_runner,
    get_service_cache,
    get_settings_dependency,
)

__all__ = [
    "get_import_queue_service",
    "get_import_runner",
    "get_service_cache",
    "get_settings_dependency",
]
