"""Time range helpers.

All ranges are half-open ``[start, end)``: ranges touching at a boundary do
not overlap. Every conflict check in the engine goes through ``overlaps``.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from clinic_scheduler.core.config import settings


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True iff [a_start, a_end) and [b_start, b_end) share at least one instant."""
    return a_start < b_end and b_start < a_end


def duration(start: datetime, end: datetime) -> timedelta:
    return end - start


def clipped_duration(
    start: datetime,
    end: datetime,
    window_start: datetime,
    window_end: datetime,
) -> timedelta:
    """Portion of [start, end) that falls inside the window."""
    lo = max(start, window_start)
    hi = min(end, window_end)
    if hi <= lo:
        return timedelta(0)
    return hi - lo


def is_past(instant: datetime, now: datetime) -> bool:
    return instant < now


def is_past_day(day: date, today: date) -> bool:
    return day < today


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_clinic_timezone(name: str | None = None) -> ZoneInfo:
    """Clinic timezone with UTC fallback for unknown names."""
    try:
        return ZoneInfo(name or settings.CLINIC_TIMEZONE)
    except (KeyError, ValueError):
        return ZoneInfo("UTC")


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    return instant.astimezone(tz).date()


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; aware ones pass through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
