"""
Database table creation script.

Creates all tables defined in ORM models using SQLAlchemy metadata.
Run once at deployment; nothing on the request path creates tables.

Dependencies: sqlalchemy, product_import.configs
System role: Database schema initialization

Usage:
    python -m product_import.boundary.db.create_tables
"""

import logging

from sqlalchemy import text

from product_import.boundary.db.base import Base
from product_import.boundary.db.connection import get_engine

# Import all models to register them with Base.metadata
from product_import.boundary.db.models import (  # noqa: F401
    ImportItemModel,
    ImportJobModel,
    ProductImageVectorModel,
    ProductTextEmbeddingModel,
)

logger = logging.getLogger(__name__)


def create_all_tables() -> None:
    """
    Create all database tables from registered ORM models.

    Idempotent: enables the pgvector extension if missing and issues
    CREATE TABLE IF NOT EXISTS for each model. Existing tables remain
    unchanged.

    Raises:
        SQLAlchemyError: If database connection fails or table creation fails
        (e.g., pgvector not installed on the server, permissions denied)
    """
    engine = get_engine()

    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        logger.info("%s:create_all_tables - pgvector extension ready", __name__)

    Base.metadata.create_all(bind=engine)
    logger.info(
        "%s:create_all_tables - Tables created",
        __name__,
        extra={"tables": sorted(Base.metadata.tables)},
    )


def drop_all_tables() -> None:
    """
    Drop all database tables and their data.

    WARNING: Irreversible data loss. Only use in development environments.

    Raises:
        SQLAlchemyError: If database connection fails or drop fails
    """
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    logger.info("%s:drop_all_tables - All tables dropped", __name__)


if __name__ == "__main__":
    from product_import.observability import configure_logging

    configure_logging()
    create_all_tables()
