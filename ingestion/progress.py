"""
Periodic progress reporting for long ingestion runs.
"""

import time
from typing import Callable, Optional

import logging

from schemas.events import FlushReport, Page

logger = logging.getLogger(__name__)


class ProgressLogger:
    """
    Ingestion observer that aggregates counters and logs them periodically.

    Page and flush callbacks only update counters; a progress line is emitted
    at most once per ``interval`` seconds, and always on ``flush()``.
    """

    def __init__(
        self,
        start_total_ingested: int = 0,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[Callable[[str], None]] = None
    ):
        self.interval = max(0.0, interval)
        self.pages = 0
        self.events = 0
        self.inserted = 0
        self.flushes = 0
        self.cursor: Optional[str] = None
        self.total_ingested = start_total_ingested

        self._clock = clock
        self._log = log or logger.info
        self._started_at = clock()
        self._last_logged_at = self._started_at

    def on_page(self, page: Page, page_number: int) -> None:
        self.pages = page_number
        self.events += len(page.events)
        self._maybe_log()

    def on_flush(self, report: FlushReport) -> None:
        self.flushes = report.flush_number
        self.inserted += report.inserted_count
        self.total_ingested += report.inserted_count
        self.cursor = report.cursor
        self._maybe_log()

    def flush(self) -> None:
        """Emit the current counters unconditionally"""
        self._emit(self._clock())

    def format_line(self, now: float) -> str:
        elapsed = max(0.0, now - self._started_at)
        rate = self.events / elapsed if elapsed > 0 else 0.0
        return (
            f"Progress: pages={self.pages} events={self.events} "
            f"inserted={self.inserted} flushes={self.flushes} "
            f"total_ingested={self.total_ingested} cursor={self.cursor} "
            f"elapsed={elapsed:.1f}s rate={rate:.0f} events/s"
        )

    def _maybe_log(self) -> None:
        now = self._clock()
        if now - self._last_logged_at >= self.interval:
            self._emit(now)

    def _emit(self, now: float) -> None:
        self._last_logged_at = now
        self._log(self.format_line(now))
