from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from dateutil import parser as dtparser


def parse_ts(ts: str) -> datetime:
    """Parse ISO-8601 timestamps and normalize to UTC."""
    dt = dtparser.isoparse(ts)
    return as_utc(dt)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already (that is how SQLite hands them back)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    """Serialize datetime to an ISO string with Z suffix."""
    return as_utc(dt).isoformat().replace("+00:00", "Z")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def days_between(a: datetime, b: datetime) -> int:
    """Whole days between two instants, floored, order-insensitive."""
    delta = abs(as_utc(b) - as_utc(a))
    return delta // timedelta(days=1)


def run_day(now: datetime) -> date:
    return as_utc(now).date()


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Half-open [00:00, next 00:00) UTC interval of the day containing `now`."""
    start = datetime.combine(run_day(now), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def safe_parse_ts(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return parse_ts(ts)
    except (TypeError, ValueError, OverflowError):
        return None
