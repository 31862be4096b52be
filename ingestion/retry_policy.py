"""
Retry, backoff and rate-limit hint parsing for the upstream feed client.

All functions are pure: time and randomness are passed in, so delays are
exact in tests. Durations are float seconds.
"""

import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional

JITTER_RATIO = 0.2
MIN_BASE_DELAY = 0.001

# Epoch magnitude thresholds for reset values
EPOCH_MICROSECONDS_THRESHOLD = 1e15
EPOCH_MILLISECONDS_THRESHOLD = 1e12
EPOCH_SECONDS_THRESHOLD = 1e9


def is_retriable_status(status_code: int) -> bool:
    """429 and every 5xx are transient; everything else is final."""
    return status_code == 429 or status_code >= 500


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    random_fn: Callable[[], float],
) -> float:
    """
    Exponential backoff with bounded jitter.

    ``base_delay * 2 ** (attempt - 1)`` capped at ``max_delay``, plus jitter
    drawn from ``[0, 0.2 * exponential]``; the sum never exceeds ``max_delay``.

    Args:
        attempt: 1-based retry attempt
        base_delay: Delay of the first retry
        max_delay: Upper bound for any delay
        random_fn: Source of uniform values in [0, 1)
    """
    base = max(MIN_BASE_DELAY, base_delay)
    cap = max(base, max_delay)
    exponential = min(cap, base * 2 ** max(0, attempt - 1))
    jitter = random_fn() * JITTER_RATIO * exponential

    return min(cap, exponential + jitter)


def _seconds_until(moment: datetime, now: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, (moment - now).total_seconds())


def parse_retry_after(header_value: Optional[str], now: datetime) -> Optional[float]:
    """
    Parse a ``Retry-After`` header.

    Accepts delta-seconds (``"2"``) or an HTTP date. Returns the wait in
    seconds, or ``None`` when the value is absent or unparseable.
    """
    if not header_value:
        return None

    trimmed = header_value.strip()
    if not trimmed:
        return None

    if trimmed.isascii() and trimmed.isdigit():
        return float(int(trimmed))

    try:
        retry_at = parsedate_to_datetime(trimmed)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None

    return _seconds_until(retry_at, now)


def _epoch_to_datetime(value: float) -> Optional[datetime]:
    if value >= EPOCH_MICROSECONDS_THRESHOLD:
        seconds = value / 1_000_000
    elif value >= EPOCH_MILLISECONDS_THRESHOLD:
        seconds = value / 1_000
    else:
        seconds = value

    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_reset_value(value: Any, now: datetime) -> Optional[float]:
    """
    Interpret a rate-limit reset hint as a wait in seconds.

    The hint may be a JSON number or a header string. Small numbers are a
    delay in seconds; numbers at epoch magnitude are an absolute time in
    seconds, milliseconds or microseconds. Date strings are absolute times.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        try:
            number = float(trimmed)
        except ValueError:
            return _parse_reset_date(trimmed, now)
    elif isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        return None

    if not math.isfinite(number) or number < 0:
        return None

    if number >= EPOCH_SECONDS_THRESHOLD:
        reset_at = _epoch_to_datetime(number)
        if reset_at is None:
            return None
        return _seconds_until(reset_at, now)

    return number


def _parse_reset_date(value: str, now: datetime) -> Optional[float]:
    try:
        reset_at = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return parse_retry_after(value, now)
    return _seconds_until(reset_at, now)
