"""
Unified application settings.

Aggregates all configuration modules into a single Settings class.
Provides dependency injection factory for FastAPI.

Dependencies: All config modules
System role: Central configuration aggregator for the application
"""

from functools import lru_cache

from pydantic import Field

from product_import.configs.base import BaseSettings
from product_import.configs.database import DatabaseSettings
from product_import.configs.enrichment import EnrichmentSettings
from product_import.configs.queue import QueueSettings


class Settings(BaseSettings):
    """Unified application settings aggregating all config modules."""

    log_level: str = Field(
        default="INFO",
        description="Root logging level applied by configure_logging (DEBUG, INFO, WARNING, ERROR)",
    )

    # Aggregated settings
    database: DatabaseSettings = DatabaseSettings()
    queue: QueueSettings = QueueSettings()
    enrichment: EnrichmentSettings = EnrichmentSettings()


@lru_cache
def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns Settings instance, cached for dependency injection.
    Environment variables loaded once at startup.

    Returns:
        Settings: Application settings instance

    Usage:
        from product_import.configs import get_settings
        settings = get_settings()
    """
    return Settings()
