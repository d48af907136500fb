from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from dateutil import tz


def resolve_timezone(name: str):
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown time zone: {name!r}")
    return zone


def format_local_timestamp(when: datetime, tz_name: str = "Asia/Kolkata") -> str:
    """
    Render `when` in `tz_name` as e.g. "18/10/2026 05:30:12 pm".

    Day-first with a 12-hour clock, seconds included and no commas, so history rows stay
    splittable on ','. Naive datetimes are taken to be UTC.
    """
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    local = when.astimezone(resolve_timezone(tz_name))
    return local.strftime("%d/%m/%Y %I:%M:%S ") + ("am" if local.hour < 12 else "pm")


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a 'Z' suffix."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
