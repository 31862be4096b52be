# ============================================================================
# File: ingestion/runner.py
# Description: Buffered ingestion loop with overlapped fetch and flush
# ============================================================================
"""
Ingestion Runner - pumps feed pages into size-bounded, checkpointed batches.

This module provides the orchestration loop with:
- Buffering of page events into batches of a configured size
- At most one in-flight flush, overlapped with the next page fetch
- Batch submission order identical to fetch order
- Cursor-advance validation between pages
- One-shot recovery from an expired resume cursor at startup
"""

import asyncio
from typing import List, Optional, Protocol, Tuple

import logging

from core.exceptions import PaginationInvariantError, UpstreamError
from schemas.events import Event, FlushReport, IngestionResult, Page, WriteResult

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def fetch_page(self, cursor: Optional[str]) -> Page: ...


class BatchWriter(Protocol):
    async def write_batch(self, events: List[Event], next_cursor: Optional[str]) -> WriteResult: ...


class IngestionObserver(Protocol):
    """Progress hooks, called synchronously after each step completes"""

    def on_page(self, page: Page, page_number: int) -> None: ...

    def on_flush(self, report: FlushReport) -> None: ...


def assert_cursor_advanced(current_cursor: Optional[str], page: Page) -> str:
    """
    Validate a page that reports more data.

    Raises:
        PaginationInvariantError: Missing cursor, or cursor did not advance
    """
    if not page.next_cursor:
        raise PaginationInvariantError(
            "Invalid pagination state: hasMore=true but nextCursor is null",
            context={"cursor": current_cursor}
        )

    if page.next_cursor == current_cursor:
        raise PaginationInvariantError(
            "Invalid pagination state: cursor did not advance",
            context={"cursor": current_cursor}
        )

    return page.next_cursor


class IngestionRunner:
    """
    Drive pagination and batch flushes for a single stream.

    Responsibilities:
    - Fetch pages from the start cursor until the feed is exhausted
    - Cut batches at the size threshold and on the final page
    - Keep exactly one flush in flight, overlapping the next fetch
    - Fold every flush result into the totals before returning or raising
    """

    def __init__(
        self,
        client: PageFetcher,
        writer: BatchWriter,
        observer: Optional[IngestionObserver] = None
    ):
        self.client = client
        self.writer = writer
        self.observer = observer

        self._pending: Optional[asyncio.Task] = None
        self._pending_size = 0
        self._pending_cursor: Optional[str] = None
        self._result = IngestionResult()

    async def run(self, start_cursor: Optional[str], batch_size: int) -> IngestionResult:
        """
        Ingest from ``start_cursor`` until a page reports no more data.

        Args:
            start_cursor: Resume cursor (None starts from the beginning)
            batch_size: Flush threshold in events (at least 1)

        Returns:
            IngestionResult with totals and the last page's cursor

        Raises:
            ExtractionError: Fetch failures and pagination invariant violations
            LoadError / CheckpointError: Flush failures
        """
        batch_size = max(1, batch_size)
        self._result = IngestionResult()

        cursor = start_cursor
        buffer: List[Event] = []

        logger.info(f"Starting ingestion (cursor={start_cursor}, batch_size={batch_size})")

        try:
            while True:
                page, cursor = await self._fetch(cursor)

                self._result.pages_fetched += 1
                self._result.events_fetched += len(page.events)
                if self.observer is not None:
                    self.observer.on_page(page, self._result.pages_fetched)

                # Validated before buffering so a broken page is never written
                next_cursor = assert_cursor_advanced(cursor, page) if page.has_more else None

                buffer.extend(page.events)

                if len(buffer) >= batch_size or not page.has_more:
                    batch, buffer = buffer, []
                    await self._submit_flush(batch, page.next_cursor)

                if not page.has_more:
                    await self._settle_pending()
                    self._result.final_cursor = page.next_cursor
                    logger.info(
                        f"Ingestion complete: pages={self._result.pages_fetched}, "
                        f"events={self._result.events_fetched}, "
                        f"inserted={self._result.inserted_count}, "
                        f"flushes={self._result.flush_count}"
                    )
                    return self._result.model_copy()

                cursor = next_cursor
        except BaseException:
            # The in-flight flush is always awaited so its rows are accounted for
            await self._settle_pending(raise_errors=False)
            raise

    async def _fetch(self, cursor: Optional[str]) -> Tuple[Page, Optional[str]]:
        """Fetch a page; returns it with the cursor actually used"""
        try:
            return await self.client.fetch_page(cursor), cursor
        except UpstreamError as e:
            startup_cursor_expired = (
                self._result.pages_fetched == 0
                and cursor is not None
                and e.is_cursor_expired
            )
            if not startup_cursor_expired:
                raise

        logger.warning(f"Resume cursor {cursor!r} expired; restarting from the beginning")
        return await self.client.fetch_page(None), None

    async def _submit_flush(self, batch: List[Event], cursor: Optional[str]) -> None:
        await self._settle_pending()

        self._pending_size = len(batch)
        self._pending_cursor = cursor
        self._pending = asyncio.ensure_future(self.writer.write_batch(batch, cursor))

    async def _settle_pending(self, raise_errors: bool = True) -> None:
        """Await the in-flight flush and fold its result into the totals"""
        task = self._pending
        if task is None:
            return
        self._pending = None

        try:
            write_result = await task
        except Exception:
            if raise_errors:
                raise
            logger.exception("Pending flush failed while aborting the run")
            return

        self._result.inserted_count += write_result.inserted_count
        self._result.flush_count += 1

        logger.debug(
            f"Flush {self._result.flush_count}: batch={self._pending_size}, "
            f"inserted={write_result.inserted_count}, cursor={self._pending_cursor}"
        )

        if self.observer is not None:
            self.observer.on_flush(FlushReport(
                batch_size=self._pending_size,
                inserted_count=write_result.inserted_count,
                cursor=self._pending_cursor,
                flush_number=self._result.flush_count,
            ))
