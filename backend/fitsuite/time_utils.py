from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert a UTC-naive datetime into the given IANA timezone (aware)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(ZoneInfo(tz_name))


def business_day_id(dt: datetime, tz_name: str) -> str:
    """
    Calendar day (YYYY-MM-DD) of `dt` as seen in the tenant's timezone.

    A payment at 23:50 local time belongs to that local day even when the
    UTC clock has already rolled over.
    """
    return to_local(dt, tz_name).strftime("%Y-%m-%d")


def business_month_id(dt: datetime, tz_name: str) -> str:
    """Calendar month (YYYY-MM) of `dt` in the tenant's timezone."""
    return to_local(dt, tz_name).strftime("%Y-%m")
