"""
Script to run one ingestion pass from the stored checkpoint to the end of the feed
"""

import asyncio
import sys
import os
import logging
from typing import Optional

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import httpx

from core.config import Settings, settings
from core.database import create_engine
from core.exceptions import IngestionException
from core.logging import setup_logging
from ingestion.extractors.events_client import EventsClient
from ingestion.extractors.live_discovery import run_live_discovery, should_run_live_discovery
from ingestion.loaders.bulk_writer import BulkWriter
from ingestion.loaders.checkpoint_store import get_checkpoint
from ingestion.progress import ProgressLogger
from ingestion.runner import IngestionRunner
from schemas.events import IngestionResult

logger = logging.getLogger(__name__)


async def run_ingestion(
    config: Settings = settings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> IngestionResult:
    """Resume from the checkpoint and ingest until the feed is exhausted"""

    engine = create_engine(config.DATABASE_URL)

    try:
        async with engine.connect() as conn:
            checkpoint = await get_checkpoint(conn)

        logger.info(
            f"Resuming ingestion (mode={config.API_MODE}, cursor={checkpoint.cursor}, "
            f"total_ingested={checkpoint.total_ingested})"
        )

        async with httpx.AsyncClient(transport=transport) as http_client:
            if should_run_live_discovery(
                config.API_MODE,
                checkpoint.total_ingested,
                config.LIVE_DISCOVERY_ON_RESUME
            ):
                await run_live_discovery(config, http_client)

            progress = ProgressLogger(
                start_total_ingested=checkpoint.total_ingested,
                interval=config.PROGRESS_LOG_INTERVAL_SECONDS
            )

            client = EventsClient.from_settings(config, http_client=http_client)
            async with BulkWriter(engine, config.INSERT_CHUNK_SIZE) as writer:
                runner = IngestionRunner(client, writer, observer=progress)
                try:
                    result = await runner.run(checkpoint.cursor, config.WRITE_BATCH_SIZE)
                finally:
                    progress.flush()

        logger.info(
            f"Ingestion finished: inserted={result.inserted_count}, "
            f"total_ingested={progress.total_ingested}, pages={result.pages_fetched}"
        )
        return result
    finally:
        await engine.dispose()


def main() -> int:
    setup_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run_ingestion())
    except IngestionException as e:
        logger.error(f"Ingestion failed: {e.to_dict()}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
