"""
Pydantic schemas for data validation and serialization.

Schemas:
    events: Canonical events, pages, checkpoint state and run results
    api: Status API response models

Usage:
    from schemas.events import Event, Page, IngestionResult
    from schemas.api import HealthCheckResponse, StatsResponse
"""

__all__ = [
    "Event",
    "Page",
    "CheckpointState",
    "WriteResult",
    "FlushReport",
    "IngestionResult",
    "HealthCheckResponse",
    "StatsResponse",
]
