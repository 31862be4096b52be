"""
Pydantic schemas for feed events, pages and ingestion results
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    """
    Canonical upstream event.

    ``payload`` is the original record, carried through unmodified.
    ``occurred_at`` is only in ``model_fields_set`` when the record had a
    timestamp key, so an absent timestamp is distinguishable from a null one.
    """

    event_id: str = Field(..., min_length=1)
    occurred_at: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_timestamp(self) -> bool:
        return "occurred_at" in self.model_fields_set

    def to_record(self) -> Dict[str, Any]:
        """Stored JSON document: payload plus canonical id and timestamp"""
        record = dict(self.payload)
        record["eventId"] = self.event_id
        if self.has_timestamp:
            record["occurredAt"] = (
                self.occurred_at.isoformat() if self.occurred_at is not None else None
            )
        return record


class Page(BaseModel):
    """One normalized page of the feed"""

    events: List[Event] = Field(default_factory=list)
    has_more: bool
    next_cursor: Optional[str] = None


class CheckpointState(BaseModel):
    """Durable resume position"""

    model_config = ConfigDict(from_attributes=True)

    cursor: Optional[str] = None
    total_ingested: int = Field(0, ge=0)
    updated_at: datetime


class WriteResult(BaseModel):
    inserted_count: int = Field(..., ge=0)
    checkpoint: CheckpointState


class FlushReport(BaseModel):
    """Details handed to the progress observer after each flush"""

    batch_size: int
    inserted_count: int
    cursor: Optional[str] = None
    flush_number: int


class IngestionResult(BaseModel):
    pages_fetched: int = 0
    events_fetched: int = 0
    inserted_count: int = 0
    final_cursor: Optional[str] = None
    flush_count: int = 0
