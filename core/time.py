"""
Time helpers shared by the client, writer and models
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return datetime.now(timezone.utc)
