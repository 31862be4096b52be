"""
Read and advance the singleton ingestion checkpoint.

All functions take the caller's connection so the checkpoint advance runs
inside the same transaction as the batch insert it accounts for.
"""

from typing import Optional, Union

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession
import logging

from core.exceptions import CheckpointError
from core.time import utcnow
from models.base import CHECKPOINT_ID
from models.checkpoint import IngestionState
from schemas.events import CheckpointState

logger = logging.getLogger(__name__)

Executor = Union[AsyncConnection, AsyncSession]

_CHECKPOINT_COLUMNS = (
    IngestionState.cursor,
    IngestionState.total_ingested,
    IngestionState.updated_at,
)


def _row_to_state(row) -> CheckpointState:
    return CheckpointState(
        cursor=row.cursor,
        total_ingested=int(row.total_ingested),
        updated_at=row.updated_at,
    )


async def get_checkpoint(executor: Executor) -> CheckpointState:
    """
    Read the checkpoint.

    Raises:
        CheckpointError: If the singleton row is missing
    """
    result = await executor.execute(
        select(*_CHECKPOINT_COLUMNS).where(IngestionState.id == CHECKPOINT_ID)
    )
    row = result.first()

    if row is None:
        raise CheckpointError(
            f"ingestion_state singleton row missing (id={CHECKPOINT_ID})",
            context={"operation": "read"}
        )

    return _row_to_state(row)


async def advance_checkpoint(
    executor: Executor,
    cursor: Optional[str],
    inserted_count: int
) -> CheckpointState:
    """
    Set the cursor and add ``inserted_count`` to the running total.

    Raises:
        CheckpointError: If inserted_count is negative or the row is missing
    """
    if inserted_count < 0:
        raise CheckpointError(
            f"inserted_count cannot be negative: {inserted_count}",
            context={"operation": "advance", "inserted_count": inserted_count}
        )

    result = await executor.execute(
        update(IngestionState)
        .where(IngestionState.id == CHECKPOINT_ID)
        .values(
            cursor=cursor,
            total_ingested=IngestionState.total_ingested + inserted_count,
            updated_at=utcnow(),
        )
        .returning(*_CHECKPOINT_COLUMNS)
    )
    row = result.first()

    if row is None:
        raise CheckpointError(
            "failed to advance ingestion checkpoint",
            context={"operation": "advance", "cursor": cursor, "inserted_count": inserted_count}
        )

    return _row_to_state(row)


async def seed_checkpoint(executor: Executor) -> bool:
    """Create the singleton row if it does not exist; returns True if created"""
    result = await executor.execute(
        select(IngestionState.id).where(IngestionState.id == CHECKPOINT_ID)
    )
    if result.first() is not None:
        return False

    await executor.execute(
        insert(IngestionState).values(
            id=CHECKPOINT_ID,
            cursor=None,
            total_ingested=0,
            updated_at=utcnow(),
        )
    )
    logger.info("Seeded ingestion checkpoint (cursor=None, total_ingested=0)")
    return True
