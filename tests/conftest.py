"""
Shared test fixtures and configuration for entire test suite.

Provides: SQLite-backed async sessions and session factories, queue settings,
item row builders, mock services
Dependencies: pytest, sqlalchemy, aiosqlite
System role: Test infrastructure and fixture management
"""

import json
import uuid
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
async def test_async_db():
    """
    Create in-memory SQLite async database for testing.

    Yields:
        AsyncSession: Test database session with cleanup (lazy imported to avoid settings issues)
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    from product_import.boundary.db.base import Base

    # Use SQLite in-memory database for tests
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Create session factory
    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Create session for test
    async with async_session() as session:
        yield session
        await session.rollback()

    # Cleanup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path):
    """
    File-backed SQLite session factory for tests that need several sessions.

    Yields:
        async_sessionmaker: Factory whose sessions share one database file
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from product_import.boundary.db.base import Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )

    await engine.dispose()


@pytest.fixture
def queue_settings():
    """
    Queue settings with small batches and sequential item processing.

    Returns:
        QueueSettings: Deterministic settings for tests
    """
    from product_import.configs.queue import QueueSettings

    return QueueSettings(
        insert_batch_size=2,
        downstream_delete_batch_size=2,
        item_concurrency=1,
        caption_concurrency=1,
        vectorize_concurrency=1,
    )


def _product_json(product_id: str, **fields) -> str:
    """Serialized product payload with a name."""
    return json.dumps({"id": product_id, "name": f"Product {product_id}", **fields})


@pytest.fixture
def make_rows():
    """
    Build item rows.

    Returns:
        Callable: make_rows(*product_ids, failed=()) -> list of rows
    """

    def _make_rows(*product_ids: str, failed: tuple[str, ...] = ()) -> list[dict]:
        rows = []
        for index, product_id in enumerate(product_ids, start=2):
            if product_id in failed:
                rows.append(
                    {
                        "row_index": index,
                        "product_id": product_id,
                        "product_json": "",
                        "status": "failed",
                        "last_error": "product_json is required",
                    }
                )
            else:
                rows.append(
                    {
                        "row_index": index,
                        "city_code": "13101",
                        "product_id": product_id,
                        "product_json": _product_json(product_id),
                    }
                )
        return rows

    return _make_rows


@pytest.fixture
def mock_queue_service():
    """
    Create mock ImportQueueService for router tests.

    Returns:
        AsyncMock: Mocked service with async methods
    """
    from product_import.configs.queue import QueueSettings

    service = AsyncMock()
    service.settings = QueueSettings()
    return service


@pytest.fixture
def job_id():
    """Generate a test job ID."""
    return uuid.uuid4()
