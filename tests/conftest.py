"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from typing import List, Optional

from ingestion.loaders.checkpoint_store import seed_checkpoint
from models.base import Base
from schemas.events import Event


@pytest.fixture
def test_database_url(tmp_path):
    """File-backed SQLite database, one per test"""
    return f"sqlite+aiosqlite:///{tmp_path / 'ingestion_test.db'}"


@pytest_asyncio.fixture(scope="function")
async def test_engine(test_database_url):
    """Create test database engine with the schema and seeded checkpoint"""
    engine = create_async_engine(
        test_database_url,
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await seed_checkpoint(conn)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


def make_events(start: int, count: int, prefix: str = "evt") -> List[Event]:
    """Events with sequential ids and timestamps"""
    return [
        Event(
            event_id=f"{prefix}_{i:05d}",
            occurred_at=datetime(2024, 1, 15, 10, 0, i % 60, tzinfo=timezone.utc),
            payload={"eventId": f"{prefix}_{i:05d}", "type": "click", "seq": i},
        )
        for i in range(start, start + count)
    ]


def page_payload(
    start: int,
    count: int,
    has_more: bool,
    next_cursor: Optional[str],
    prefix: str = "evt"
) -> dict:
    """Raw upstream page body in the primary wire shape"""
    return {
        "data": [
            {
                "eventId": f"{prefix}_{i:05d}",
                "occurredAt": f"2024-01-15T10:00:{i % 60:02d}Z",
                "type": "click",
                "seq": i,
            }
            for i in range(start, start + count)
        ],
        "hasMore": has_more,
        "nextCursor": next_cursor,
    }


@pytest.fixture
def mock_api_data():
    """Three upstream pages of 2, 2 and 1 events"""
    return {
        None: page_payload(0, 2, True, "c1"),
        "c1": page_payload(2, 2, True, "c2"),
        "c2": page_payload(4, 1, False, None),
    }


@pytest.fixture
def event_factory():
    return make_events
