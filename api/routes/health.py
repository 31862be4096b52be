"""
Health check endpoint with database and checkpoint status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db
from sqlalchemy.exc import SQLAlchemyError
from core.exceptions import CheckpointError
from ingestion.loaders.checkpoint_store import get_checkpoint
from schemas.api import HealthCheckResponse, CheckpointInfo
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Current ingestion checkpoint (if seeded)
    """

    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")
        return HealthCheckResponse(database_connected=False)

    checkpoint = None
    try:
        state = await get_checkpoint(db)
        checkpoint = CheckpointInfo.model_validate(state)
    except (CheckpointError, SQLAlchemyError) as e:
        logger.warning(f"Checkpoint unavailable: {str(e)}")

    return HealthCheckResponse(
        database_connected=db_connected,
        checkpoint=checkpoint
    )
