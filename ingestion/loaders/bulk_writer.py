"""
Transactional bulk writer for feed events (idempotent by event id)
"""

from typing import Dict, Iterator, List, Optional, Sequence, Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
import logging

from core.exceptions import CheckpointError, StorageError
from core.time import utcnow
from ingestion.loaders.checkpoint_store import advance_checkpoint
from models.ingested_event import IngestedEvent
from schemas.events import Event, WriteResult

logger = logging.getLogger(__name__)

# 4 bind parameters per row; stays well under PostgreSQL's 32767 limit
MAX_INSERT_EVENTS_PER_STATEMENT = 5000

_INSERT_BUILDERS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dedupe_events_by_id(events: Sequence[Event]) -> List[Event]:
    """Drop repeated event ids, keeping the first occurrence in order"""
    seen = set()
    deduped = []
    for event in events:
        if event.event_id in seen:
            continue
        seen.add(event.event_id)
        deduped.append(event)
    return deduped


def _event_row(event: Event, ingested_at) -> Dict[str, Any]:
    return {
        "event_id": event.event_id,
        "occurred_at": event.occurred_at,
        "payload": event.to_record(),
        "ingested_at": ingested_at,
    }


def build_insert_statement(events: Sequence[Event], dialect_name: str = "postgresql"):
    """
    Multi-row INSERT ... ON CONFLICT (event_id) DO NOTHING.

    Raises:
        ValueError: For an empty batch or an unsupported dialect
    """
    if not events:
        raise ValueError("Cannot build insert statement for empty event batch")

    builder = _INSERT_BUILDERS.get(dialect_name)
    if builder is None:
        raise ValueError(f"Unsupported dialect for idempotent insert: {dialect_name}")

    ingested_at = utcnow()
    stmt = builder(IngestedEvent).values([_event_row(event, ingested_at) for event in events])
    return stmt.on_conflict_do_nothing(index_elements=["event_id"])


def chunk_events(events: Sequence[Event], size: int) -> Iterator[Sequence[Event]]:
    size = max(1, size)
    for start in range(0, len(events), size):
        yield events[start:start + size]


class BulkWriter:
    """
    Persist event batches and advance the checkpoint atomically.

    Ensures:
    - Duplicate ids within a batch are inserted once
    - Rows already stored are silently skipped (idempotent re-ingestion)
    - Insert and checkpoint advance commit together or not at all
    - One cached connection, replaced after any failed write
    """

    def __init__(
        self,
        engine: AsyncEngine,
        max_rows_per_statement: int = MAX_INSERT_EVENTS_PER_STATEMENT
    ):
        self.engine = engine
        self.max_rows_per_statement = max(1, max_rows_per_statement)
        self._connection: Optional[AsyncConnection] = None

    async def __aenter__(self) -> "BulkWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def write_batch(self, events: Sequence[Event], next_cursor: Optional[str]) -> WriteResult:
        """
        Insert ``events`` and move the checkpoint to ``next_cursor``.

        An empty batch still advances the cursor.

        Returns:
            WriteResult with rows actually inserted and the new checkpoint

        Raises:
            CheckpointError: Negative count or missing checkpoint row
            StorageError: Any other database failure (transaction rolled back)
        """
        deduped = dedupe_events_by_id(events)
        try:
            connection = await self._acquire()
            async with connection.begin():
                inserted_count = 0
                for chunk in chunk_events(deduped, self.max_rows_per_statement):
                    result = await connection.execute(
                        build_insert_statement(chunk, connection.dialect.name)
                    )
                    inserted_count += max(0, result.rowcount or 0)

                checkpoint = await advance_checkpoint(connection, next_cursor, inserted_count)
        except CheckpointError:
            await self._discard()
            raise
        except Exception as e:
            await self._discard()
            raise StorageError(
                "Failed to write event batch",
                context={
                    "operation": "INSERT",
                    "table_name": "ingested_events",
                    "batch_size": len(deduped),
                    "cursor": next_cursor
                },
                original_exception=e
            )

        logger.debug(
            f"Committed batch: {len(deduped)} events, {inserted_count} inserted, "
            f"cursor={next_cursor}, total_ingested={checkpoint.total_ingested}"
        )
        return WriteResult(inserted_count=inserted_count, checkpoint=checkpoint)

    async def close(self) -> None:
        """Release the cached connection"""
        if self._connection is not None:
            connection = self._connection
            self._connection = None
            await connection.close()

    async def _acquire(self) -> AsyncConnection:
        if self._connection is None:
            self._connection = await self.engine.connect()
        return self._connection

    async def _discard(self) -> None:
        """Drop the cached connection; its session state is no longer trusted"""
        connection = self._connection
        self._connection = None
        if connection is None:
            return

        try:
            await connection.invalidate()
            await connection.close()
        except Exception as e:
            logger.warning(f"Failed to close discarded connection: {e}")
