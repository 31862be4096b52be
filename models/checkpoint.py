from sqlalchemy import Column, Integer, String, BigInteger, CheckConstraint
from models.base import Base, UTCDateTime, utcnow


class IngestionState(Base):
    """
    Resume checkpoint for the event feed.

    Design:
    - Exactly one row (id = 1), seeded by the initial migration
    - cursor is the upstream token of the next page to fetch
    - total_ingested counts rows actually inserted, never decremented
    - Advanced in the same transaction as the batch insert it accounts for
    """
    __tablename__ = "ingestion_state"

    id = Column(Integer, primary_key=True, autoincrement=False)

    cursor = Column(String, nullable=True)
    total_ingested = Column(BigInteger, nullable=False, default=0)

    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_ingestion_state_singleton"),
        CheckConstraint("total_ingested >= 0", name="ck_ingestion_state_total_non_negative"),
    )
