"""
Create the schema from the ORM models and seed the checkpoint row.

Intended for local development; deployed databases use `scripts/migrate.py`.
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import AsyncEngine
from core.config import settings
from core.database import create_engine
from core.logging import setup_logging
from ingestion.loaders.checkpoint_store import seed_checkpoint
from models import Base

logger = logging.getLogger(__name__)


async def init_database(engine: AsyncEngine) -> bool:
    """Create missing tables and the singleton checkpoint; True if seeded now"""
    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        seeded = await seed_checkpoint(conn)
        logger.info("Tables created successfully.")
    return seeded


async def main():
    logger.info("Connecting to database...")
    engine = create_engine(settings.DATABASE_URL)
    try:
        await init_database(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(main())
