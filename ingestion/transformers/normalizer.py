"""
Normalize heterogeneous upstream page payloads into canonical Page models
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import math
import logging

from core.exceptions import MalformedResponseError
from schemas.events import Event, Page

logger = logging.getLogger(__name__)

_MISSING = object()

EVENT_LIST_KEYS = ("data", "events")
EVENT_ID_KEYS = ("eventId", "event_id", "id")
TIMESTAMP_KEYS = ("occurredAt", "occurred_at", "timestamp")
HAS_MORE_KEYS = ("hasMore", "has_more")
NEXT_CURSOR_KEYS = ("nextCursor", "next_cursor")

# Epoch magnitude boundaries for numeric timestamps
NANOSECONDS_THRESHOLD = 1e17
MICROSECONDS_THRESHOLD = 1e14
SECONDS_LOWER_BOUND = 1e8
SECONDS_UPPER_BOUND = 1e11


class ResponseNormalizer:
    """
    Convert an upstream JSON page into a Page.

    Handles:
    - Event array under ``data`` or ``events``
    - camelCase / snake_case keys at the top level or under ``pagination``
    - Event ids under ``eventId``, ``event_id`` or ``id``
    - ISO strings, numeric epochs and numeric strings as timestamps
    - Unknown event fields, passed through unchanged
    """

    def normalize_page(self, payload: Any) -> Page:
        """
        Normalize one decoded page payload.

        Raises:
            MalformedResponseError: If the payload cannot be read as a page
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                "Invalid events response: expected object",
                context={"payload_type": type(payload).__name__}
            )

        raw_events = self._first_list(payload, EVENT_LIST_KEYS)
        if raw_events is None:
            raise MalformedResponseError(
                "Invalid events response: data must be an array",
                context={"top_level_keys": sorted(payload.keys())}
            )

        pagination = payload.get("pagination")
        if not isinstance(pagination, dict):
            pagination = {}

        has_more_value = self._first_present(payload, pagination, HAS_MORE_KEYS)
        cursor_value = self._first_present(payload, pagination, NEXT_CURSOR_KEYS)

        next_cursor = cursor_value if isinstance(cursor_value, str) else None
        has_more = self._coerce_bool(has_more_value)
        if has_more is None:
            has_more = bool(next_cursor)

        events = [
            self.normalize_event(item, index)
            for index, item in enumerate(raw_events)
        ]

        return Page(events=events, has_more=has_more, next_cursor=next_cursor)

    def normalize_event(self, record: Any, index: int = 0) -> Event:
        """Normalize a single event record"""
        if not isinstance(record, dict):
            raise MalformedResponseError(
                "Invalid event payload: event must be an object",
                context={"event_index": index}
            )

        event_id = self._first_value(record, EVENT_ID_KEYS)
        if not isinstance(event_id, str) or not event_id:
            raise MalformedResponseError(
                "Invalid event payload: missing event id",
                context={"event_index": index, "field_name": "eventId"}
            )

        raw_timestamp = self._first_value(record, TIMESTAMP_KEYS)
        if raw_timestamp is _MISSING:
            return Event(event_id=event_id, payload=record)

        return Event(
            event_id=event_id,
            occurred_at=self._parse_timestamp(raw_timestamp),
            payload=record,
        )

    @staticmethod
    def _first_list(payload: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[List[Any]]:
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
        return None

    @staticmethod
    def _first_value(record: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
        """First non-null value among keys, None if only nulls, _MISSING if none exist"""
        found = _MISSING
        for key in keys:
            if key not in record:
                continue
            if record[key] is not None:
                return record[key]
            found = None
        return found

    @staticmethod
    def _first_present(
        payload: Dict[str, Any],
        pagination: Dict[str, Any],
        keys: Tuple[str, ...]
    ) -> Any:
        for source in (payload, pagination):
            for key in keys:
                if source.get(key) is not None:
                    return source[key]
        return None

    @staticmethod
    def _coerce_bool(value: Any) -> Optional[bool]:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "true":
                return True
            if normalized == "false":
                return False
        if isinstance(value, (int, float)):
            if value == 1:
                return True
            if value == 0:
                return False
        return None

    @classmethod
    def _parse_timestamp(cls, value: Any) -> Optional[datetime]:
        """Parse a timestamp; anything unusable becomes None"""
        if value is None or isinstance(value, bool):
            return None

        if isinstance(value, (int, float)):
            try:
                return cls._from_epoch(float(value))
            except OverflowError:
                return None

        if not isinstance(value, str):
            return None

        trimmed = value.strip()
        if not trimmed:
            return None

        try:
            numeric = float(trimmed)
        except ValueError:
            numeric = None

        if numeric is not None:
            parsed = cls._from_epoch(numeric)
            if parsed is not None:
                return parsed

        try:
            parsed = datetime.fromisoformat(trimmed.replace("Z", "+00:00"))
        except ValueError:
            return None

        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def _from_epoch(value: float) -> Optional[datetime]:
        """Epoch number to UTC datetime; the unit is picked by magnitude"""
        if not math.isfinite(value):
            return None

        magnitude = abs(value)
        if magnitude >= NANOSECONDS_THRESHOLD:
            seconds = value / 1_000_000_000
        elif magnitude >= MICROSECONDS_THRESHOLD:
            seconds = value / 1_000_000
        elif SECONDS_LOWER_BOUND <= magnitude < SECONDS_UPPER_BOUND:
            seconds = value
        else:
            seconds = value / 1_000

        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None


def normalize_page(payload: Any) -> Page:
    """Module-level shortcut used by the fetch client"""
    return ResponseNormalizer().normalize_page(payload)
