from sqlalchemy import Column, String, Index, func
from models.base import Base, JSONPayload, UTCDateTime, utcnow


class IngestedEvent(Base):
    """
    One row per upstream event, keyed by the upstream event id.

    Design Decisions:
    - event_id is the primary key so re-ingestion is an idempotent no-op
      (INSERT ... ON CONFLICT DO NOTHING)
    - occurred_at holds the normalized timestamp, NULL when absent/invalid
    - payload keeps the full original record for replay and debugging
    """
    __tablename__ = "ingested_events"

    event_id = Column(String, primary_key=True)
    occurred_at = Column(UTCDateTime, nullable=True)
    payload = Column(JSONPayload, nullable=False)
    ingested_at = Column(UTCDateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_ingested_events_occurred_at", "occurred_at"),
    )
