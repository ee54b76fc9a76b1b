"""
Clock and timestamp utilities.

Lateness, validity windows and reminder thresholds all depend on "now".
Components take a Clock so tests can pin or advance time without patching
the system clock. Timestamps are persisted as fixed-width UTC ISO-8601 strings
so DynamoDB string comparisons order them chronologically.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

# Gym local time (Gulf Standard Time, UTC+4) used for calendar-day logic
GST = timezone(timedelta(hours=4))

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Clock:
    """Source of the current time. Always returns timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SystemClock(Clock):
    pass


class FixedClock(Clock):
    """
    Clock pinned to a given instant; used by tests and replay scripts.

    Example:
        >>> clock = FixedClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))
        >>> clock.advance(minutes=16)
    """

    def __init__(self, at: datetime):
        self._now = ensure_utc(at)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = ensure_utc(at)

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime to the fixed-width storage format."""
    return ensure_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored or caller-supplied timestamp.

    Accepts ISO-8601 strings with "Z" or an explicit offset, and datetimes.

    Raises:
        ValueError: If the value is not a well-formed timestamp
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def local_day_bounds(day: date, tz: timezone = GST) -> tuple:
    """Return (start, end) UTC datetimes spanning a local calendar day, end inclusive."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time.max, tzinfo=tz)
    return ensure_utc(start), ensure_utc(end)


def local_date(value: datetime, tz: timezone = GST) -> date:
    """Calendar date of an instant in gym local time."""
    return ensure_utc(value).astimezone(tz).date()
