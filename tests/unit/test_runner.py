"""
Unit tests for the buffered ingestion runner
"""

import asyncio
import pytest
from datetime import datetime, timezone

from core.exceptions import (
    PaginationInvariantError,
    StorageError,
    TransportError,
    UpstreamError,
)
from ingestion.runner import IngestionRunner, assert_cursor_advanced
from schemas.events import CheckpointState, Event, Page, WriteResult

UPDATED_AT = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
EXPIRED_BODY = '{"error":{"code":"CURSOR_EXPIRED"}}'


def events(*ids):
    return [Event(event_id=event_id) for event_id in ids]


class FakeClient:
    """Serves pages keyed by cursor; values may be exceptions to raise"""

    def __init__(self, pages):
        self.pages = pages
        self.cursors = []

    async def fetch_page(self, cursor):
        self.cursors.append(cursor)
        item = self.pages[cursor]
        if isinstance(item, Exception):
            raise item
        return item


class FakeWriter:

    def __init__(self, fail_on_call=None):
        self.calls = []
        self.fail_on_call = fail_on_call
        self.total = 0

    async def write_batch(self, batch, next_cursor):
        self.calls.append(([event.event_id for event in batch], next_cursor))
        if self.fail_on_call == len(self.calls):
            raise StorageError("Failed to write event batch")
        inserted = len({event.event_id for event in batch})
        self.total += inserted
        return WriteResult(
            inserted_count=inserted,
            checkpoint=CheckpointState(cursor=next_cursor, total_ingested=self.total, updated_at=UPDATED_AT),
        )


class RecordingObserver:

    def __init__(self):
        self.pages = []
        self.flushes = []

    def on_page(self, page, page_number):
        self.pages.append((page_number, len(page.events)))

    def on_flush(self, report):
        self.flushes.append(report)


def three_pages():
    return {
        None: Page(events=events("e1", "e2"), has_more=True, next_cursor="c1"),
        "c1": Page(events=events("e3", "e4"), has_more=True, next_cursor="c2"),
        "c2": Page(events=events("e5"), has_more=False, next_cursor=None),
    }


class TestBatching:
    """Test batch boundaries and result totals"""

    @pytest.mark.asyncio
    async def test_threshold_and_terminal_flush(self):
        writer = FakeWriter()
        runner = IngestionRunner(FakeClient(three_pages()), writer)

        result = await runner.run(None, batch_size=3)

        assert writer.calls == [
            (["e1", "e2", "e3", "e4"], "c2"),
            (["e5"], None),
        ]
        assert result.pages_fetched == 3
        assert result.events_fetched == 5
        assert result.inserted_count == 5
        assert result.flush_count == 2
        assert result.final_cursor is None

    @pytest.mark.asyncio
    async def test_batch_per_page_preserves_order(self):
        writer = FakeWriter()
        result = await IngestionRunner(FakeClient(three_pages()), writer).run(None, batch_size=1)

        assert [cursor for _, cursor in writer.calls] == ["c1", "c2", None]
        assert result.flush_count == 3

    @pytest.mark.asyncio
    async def test_non_positive_batch_size_is_floored(self):
        writer = FakeWriter()
        result = await IngestionRunner(FakeClient(three_pages()), writer).run(None, batch_size=0)

        assert result.flush_count == 3

    @pytest.mark.asyncio
    async def test_empty_terminal_page_flushes_final_cursor(self):
        pages = {
            "c5": Page(events=events("e1"), has_more=True, next_cursor="c6"),
            "c6": Page(events=[], has_more=False, next_cursor="c7"),
        }
        writer = FakeWriter()

        result = await IngestionRunner(FakeClient(pages), writer).run("c5", batch_size=100)

        assert writer.calls == [(["e1"], "c7")]
        assert result.final_cursor == "c7"

    @pytest.mark.asyncio
    async def test_duplicate_ids_across_pages_counted_once(self):
        pages = {
            None: Page(events=events("e1", "e2"), has_more=True, next_cursor="c1"),
            "c1": Page(events=events("e2", "e3"), has_more=False, next_cursor=None),
        }

        result = await IngestionRunner(FakeClient(pages), FakeWriter()).run(None, batch_size=10)

        assert result.events_fetched == 4
        assert result.inserted_count == 3

    @pytest.mark.asyncio
    async def test_observer_notified(self):
        observer = RecordingObserver()
        runner = IngestionRunner(FakeClient(three_pages()), FakeWriter(), observer=observer)

        await runner.run(None, batch_size=3)

        assert observer.pages == [(1, 2), (2, 2), (3, 1)]
        assert [(r.flush_number, r.batch_size, r.inserted_count, r.cursor) for r in observer.flushes] == [
            (1, 4, 4, "c2"),
            (2, 1, 1, None),
        ]


class TestOverlap:
    """Test fetch/flush overlap and the single in-flight flush"""

    @pytest.mark.asyncio
    async def test_next_fetch_runs_while_flush_in_flight(self):
        gate = asyncio.Event()
        state = {"in_flight": 0, "max_in_flight": 0, "overlapped": False, "order": []}

        class GatedWriter:
            async def write_batch(self, batch, next_cursor):
                state["in_flight"] += 1
                state["max_in_flight"] = max(state["max_in_flight"], state["in_flight"])
                if next_cursor == "c1":
                    await gate.wait()
                state["order"].append(next_cursor)
                state["in_flight"] -= 1
                return WriteResult(
                    inserted_count=len(batch),
                    checkpoint=CheckpointState(cursor=next_cursor, updated_at=UPDATED_AT),
                )

        pages = three_pages()

        class OverlapClient(FakeClient):
            async def fetch_page(self, cursor):
                if cursor == "c1":
                    await asyncio.sleep(0)
                    state["overlapped"] = state["in_flight"] == 1
                    gate.set()
                return await super().fetch_page(cursor)

        result = await IngestionRunner(OverlapClient(pages), GatedWriter()).run(None, batch_size=1)

        assert state["overlapped"] is True
        assert state["max_in_flight"] == 1
        assert state["order"] == ["c1", "c2", None]
        assert result.inserted_count == 5


class TestPaginationInvariants:

    def test_assert_cursor_advanced(self):
        assert assert_cursor_advanced("c1", Page(has_more=True, next_cursor="c2")) == "c2"

    @pytest.mark.asyncio
    async def test_missing_cursor_with_more_data(self):
        pages = {None: Page(events=events("e1"), has_more=True, next_cursor=None)}
        writer = FakeWriter()

        with pytest.raises(PaginationInvariantError) as exc_info:
            await IngestionRunner(FakeClient(pages), writer).run(None, batch_size=1)

        assert "hasMore=true but nextCursor is null" in exc_info.value.message
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_cursor_did_not_advance(self):
        pages = {"c1": Page(events=events("e1"), has_more=True, next_cursor="c1")}
        writer = FakeWriter()

        with pytest.raises(PaginationInvariantError) as exc_info:
            await IngestionRunner(FakeClient(pages), writer).run("c1", batch_size=1)

        assert "cursor did not advance" in exc_info.value.message
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_prior_flush_settled_before_invariant_error(self):
        pages = {
            None: Page(events=events("e1"), has_more=True, next_cursor="c1"),
            "c1": Page(events=events("e2"), has_more=True, next_cursor=None),
        }
        writer = FakeWriter()
        observer = RecordingObserver()

        with pytest.raises(PaginationInvariantError):
            await IngestionRunner(FakeClient(pages), writer, observer=observer).run(None, batch_size=1)

        assert writer.calls == [(["e1"], "c1")]
        assert len(observer.flushes) == 1


class TestErrorPropagation:

    @pytest.mark.asyncio
    async def test_fetch_error_waits_for_pending_flush(self):
        pages = three_pages()
        pages["c1"] = TransportError("Events API request failed after 6 attempts")
        writer = FakeWriter()
        observer = RecordingObserver()

        with pytest.raises(TransportError):
            await IngestionRunner(FakeClient(pages), writer, observer=observer).run(None, batch_size=1)

        assert writer.calls == [(["e1", "e2"], "c1")]
        assert [report.cursor for report in observer.flushes] == ["c1"]

    @pytest.mark.asyncio
    async def test_flush_error_propagates(self):
        writer = FakeWriter(fail_on_call=1)

        with pytest.raises(StorageError):
            await IngestionRunner(FakeClient(three_pages()), writer).run(None, batch_size=1)

        assert len(writer.calls) == 1

    @pytest.mark.asyncio
    async def test_terminal_flush_error_propagates(self):
        writer = FakeWriter(fail_on_call=2)

        with pytest.raises(StorageError):
            await IngestionRunner(FakeClient(three_pages()), writer).run(None, batch_size=3)


class TestCursorExpiry:
    """Test recovery from an expired resume cursor"""

    @pytest.mark.asyncio
    async def test_expired_start_cursor_restarts_from_beginning(self):
        pages = three_pages()
        pages["stale"] = UpstreamError("Events API request failed with status 400", 400, EXPIRED_BODY)
        client = FakeClient(pages)

        result = await IngestionRunner(client, FakeWriter()).run("stale", batch_size=10)

        assert client.cursors == ["stale", None, "c1", "c2"]
        assert result.pages_fetched == 3
        assert result.inserted_count == 5

    @pytest.mark.asyncio
    async def test_other_upstream_errors_not_retried(self):
        pages = {"stale": UpstreamError("Events API request failed with status 400", 400, "bad request")}
        client = FakeClient(pages)

        with pytest.raises(UpstreamError):
            await IngestionRunner(client, FakeWriter()).run("stale", batch_size=10)

        assert client.cursors == ["stale"]

    @pytest.mark.asyncio
    async def test_expiry_mid_run_propagates(self):
        pages = three_pages()
        pages["c1"] = UpstreamError("Events API request failed with status 400", 400, EXPIRED_BODY)
        client = FakeClient(pages)

        with pytest.raises(UpstreamError) as exc_info:
            await IngestionRunner(client, FakeWriter()).run(None, batch_size=10)

        assert exc_info.value.is_cursor_expired is True
        assert client.cursors == [None, "c1"]
