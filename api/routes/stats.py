"""
Ingestion statistics endpoint
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from api.dependencies import get_db
from ingestion.loaders.checkpoint_store import get_checkpoint
from models.ingested_event import IngestedEvent
from schemas.api import StatsResponse
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)):
    """
    Get ingestion statistics.

    Returns:
    - Running total from the checkpoint
    - Number of stored event rows
    - Current resume cursor and last checkpoint update
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"

    logger.info(f"[{request_id}] GET /stats")

    checkpoint = await get_checkpoint(db)

    stored_result = await db.execute(
        select(func.count()).select_from(IngestedEvent)
    )
    stored_events = stored_result.scalar() or 0

    logger.info(
        f"[{request_id}] Stats: total_ingested={checkpoint.total_ingested}, "
        f"stored={stored_events}"
    )

    return StatsResponse(
        total_ingested=checkpoint.total_ingested,
        stored_events=stored_events,
        cursor=checkpoint.cursor,
        updated_at=checkpoint.updated_at
    )
