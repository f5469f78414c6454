# -*- coding: utf-8 -*-
"""Time helpers for vicimage."""

# Import datetime helpers.
from datetime import datetime, timedelta, timezone

# Reference epoch of the default time units.
TIME_UNITS = "hours since 1900-01-01 00:00:0.0"
_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)


def utc_now_iso() -> str:
    """Return current UTC time as an ISO-8601 string with 'Z'."""
    now = datetime.now(timezone.utc)
    # Convert to ISO string and force 'Z' suffix.
    return now.isoformat().replace("+00:00", "Z")


def parse_iso8601_to_utc_datetime(value: str | None) -> datetime:
    """Parse ISO-8601 string into an aware UTC datetime (fallback: now)."""
    if not value:
        return datetime.now(timezone.utc)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def datetime_to_hours_since_1900(dt: datetime) -> float:
    """Convert datetime to hours since 1900-01-01 UTC."""
    hours = (dt - _EPOCH).total_seconds() / 3600.0
    return float(hours)


def record_time_hours(start_time: str | None, time_idx: int, step_s: float) -> float:
    """Return the time coordinate (hours since 1900) of output record `time_idx`."""
    start = parse_iso8601_to_utc_datetime(start_time)
    return datetime_to_hours_since_1900(start + timedelta(seconds=float(step_s) * int(time_idx)))
