"""
Resumable ingestion pipeline for a cursor-paginated event feed.

Modules:
    retry_policy: Backoff computation and rate-limit hint parsing
    runner: Buffered loop that overlaps page fetches with batch flushes
    progress: Periodic progress reporting observer

Subpackages:
    extractors: Events API client and live discovery probe
    transformers: Response normalization into canonical pages and events
    loaders: Idempotent bulk writer and checkpoint store

Flow:
    1. Fetch - EventsClient retries transient failures and honors rate limits
    2. Normalize - ResponseNormalizer accepts the supported response shapes
    3. Write - BulkWriter inserts a batch and advances the checkpoint atomically

    The checkpoint only moves after a commit, so an aborted run resumes from
    the last committed cursor and re-inserts nothing already stored.

Usage:
    from ingestion.extractors.events_client import EventsClient
    from ingestion.loaders.bulk_writer import BulkWriter
    from ingestion.runner import IngestionRunner

Example:
    client = EventsClient.from_settings(settings)
    async with BulkWriter(engine) as writer:
        result = await IngestionRunner(client, writer).run(cursor, batch_size=10000)

    print(f"Inserted {result.inserted_count} events")
"""

__all__ = [
    "EventsClient",
    "ResponseNormalizer",
    "BulkWriter",
    "IngestionRunner",
    "ProgressLogger",
]
