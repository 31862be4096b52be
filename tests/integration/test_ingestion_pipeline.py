# ============================================================================
# File: tests/integration/test_ingestion_pipeline.py
# ============================================================================

import pytest
import httpx
from sqlalchemy import func, select
from unittest.mock import AsyncMock

from core.config import Settings
from core.exceptions import UpstreamError
from ingestion.extractors.events_client import EventsClient
from ingestion.loaders.bulk_writer import BulkWriter
from ingestion.loaders.checkpoint_store import get_checkpoint
from ingestion.runner import IngestionRunner
from models import IngestedEvent
from scripts.run_ingestion import run_ingestion

BASE_URL = "https://feed.example.com/api/v1"


class MockFeed:
    """Offset-cursor event feed served through httpx.MockTransport"""

    def __init__(self, total, failing=None, flaky=None):
        self.total = total
        self.failing = dict(failing or {})
        self.flaky = dict(flaky or {})
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        cursor = request.url.params.get("cursor")
        limit = int(request.url.params["limit"])

        if cursor in self.failing:
            return httpx.Response(self.failing[cursor], text="feed unavailable")
        if self.flaky.get(cursor, 0) > 0:
            self.flaky[cursor] -= 1
            return httpx.Response(503, text="try again")

        offset = int(cursor[1:]) if cursor else 0
        end = min(offset + limit, self.total)
        has_more = end < self.total

        return httpx.Response(200, json={
            "data": [
                {"eventId": f"evt-{i:07d}", "occurredAt": 1705312800000 + i, "value": i}
                for i in range(offset, end)
            ],
            "hasMore": has_more,
            "nextCursor": f"o{end}" if has_more else None,
        })

    def transport(self):
        return httpx.MockTransport(self)


def make_client(feed, page_limit=10, sleep=None):
    return EventsClient(
        BASE_URL,
        "test_key",
        page_limit=page_limit,
        http_client=httpx.AsyncClient(transport=feed.transport()),
        sleep=sleep or AsyncMock(),
        random_fn=lambda: 0.0,
    )


async def stored_ids(engine):
    async with engine.connect() as conn:
        result = await conn.execute(select(IngestedEvent.event_id))
        return [row.event_id for row in result]


async def read_checkpoint(engine):
    async with engine.connect() as conn:
        return await get_checkpoint(conn)


@pytest.mark.asyncio
async def test_full_ingestion_from_empty_store(test_engine):
    feed = MockFeed(total=25)

    async with make_client(feed) as client, BulkWriter(test_engine) as writer:
        result = await IngestionRunner(client, writer).run(None, batch_size=12)

    assert result.pages_fetched == 3
    assert result.events_fetched == 25
    assert result.inserted_count == 25
    assert result.flush_count == 2

    checkpoint = await read_checkpoint(test_engine)
    assert checkpoint.total_ingested == 25
    assert checkpoint.cursor is None

    ids = await stored_ids(test_engine)
    assert len(ids) == 25
    assert len(set(ids)) == 25


@pytest.mark.asyncio
async def test_uneven_pages_cut_into_batches(test_engine, mock_api_data):
    def handler(request):
        return httpx.Response(200, json=mock_api_data[request.url.params.get("cursor")])

    client = EventsClient(
        BASE_URL,
        "test_key",
        page_limit=2,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=AsyncMock(),
    )

    async with client, BulkWriter(test_engine) as writer:
        result = await IngestionRunner(client, writer).run(None, batch_size=3)

    assert result.pages_fetched == 3
    assert result.inserted_count == 5
    assert result.flush_count == 2

    checkpoint = await read_checkpoint(test_engine)
    assert checkpoint.total_ingested == 5
    assert checkpoint.cursor is None
    assert sorted(await stored_ids(test_engine)) == [f"evt_{i:05d}" for i in range(5)]


@pytest.mark.asyncio
async def test_rerun_inserts_nothing_twice(test_engine):
    feed = MockFeed(total=15)

    async with make_client(feed) as client, BulkWriter(test_engine) as writer:
        first = await IngestionRunner(client, writer).run(None, batch_size=10)
        second = await IngestionRunner(client, writer).run(None, batch_size=10)

    assert first.inserted_count == 15
    assert second.inserted_count == 0
    assert second.events_fetched == 15

    checkpoint = await read_checkpoint(test_engine)
    assert checkpoint.total_ingested == 15
    assert len(await stored_ids(test_engine)) == 15


@pytest.mark.asyncio
async def test_transient_server_errors_are_absorbed(test_engine):
    feed = MockFeed(total=20, flaky={"o10": 2})
    sleep = AsyncMock()

    async with make_client(feed, sleep=sleep) as client, BulkWriter(test_engine) as writer:
        result = await IngestionRunner(client, writer).run(None, batch_size=10)

    assert result.inserted_count == 20
    assert sleep.await_count == 2
    assert len(feed.requests) == 4


@pytest.mark.asyncio
async def test_ingestion_script_end_to_end(test_engine, test_database_url):
    feed = MockFeed(total=7)
    config = Settings(
        DATABASE_URL=test_database_url,
        API_BASE_URL=BASE_URL,
        API_PAGE_LIMIT=3,
        WRITE_BATCH_SIZE=4,
        PROGRESS_LOG_INTERVAL_SECONDS=0,
    )

    result = await run_ingestion(config, transport=feed.transport())

    assert result.inserted_count == 7
    assert result.pages_fetched == 3
    assert (await read_checkpoint(test_engine)).total_ingested == 7

    async with test_engine.connect() as conn:
        count = (await conn.execute(select(func.count()).select_from(IngestedEvent))).scalar()
    assert count == 7


@pytest.mark.asyncio
async def test_ingestion_script_surfaces_upstream_failure(test_engine, test_database_url):
    feed = MockFeed(total=7, failing={None: 401})
    config = Settings(DATABASE_URL=test_database_url, API_BASE_URL=BASE_URL, API_PAGE_LIMIT=3)

    with pytest.raises(UpstreamError) as exc_info:
        await run_ingestion(config, transport=feed.transport())

    assert exc_info.value.status_code == 401
    assert (await read_checkpoint(test_engine)).total_ingested == 0
