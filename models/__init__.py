"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class, UTC datetime type and JSON payload type
    ingested_event: One row per upstream event, unique by event id
    checkpoint: Singleton resume checkpoint (cursor + total ingested)

Usage:
    from models import Base, IngestedEvent, IngestionState
    from models.base import CHECKPOINT_ID

Schema changes are applied by Alembic (see alembic/versions); the models
mirror the migrated schema and are used for Core statements and tests.
"""

from models.base import Base, CHECKPOINT_ID
from models.ingested_event import IngestedEvent
from models.checkpoint import IngestionState

__all__ = [
    "Base",
    "CHECKPOINT_ID",
    "IngestedEvent",
    "IngestionState",
]
