from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Till clock: current UTC time, stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_day_key(moment: Optional[datetime] = None) -> str:
    """YYYYMMDD key of the business day a moment falls on (receipt numbering)."""
    return (moment or utcnow()).strftime("%Y%m%d")


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a business day as naive UTC datetimes."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a due date or filter bound sent by the till.

    Blank means no date. A bare "YYYY-MM-DD" is midnight UTC of that day.
    Offsets (including "Z") are converted to UTC and dropped.
    """
    text = (value or "").strip()
    if not text:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 with a trailing 'Z'; naive values are UTC."""
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0).isoformat() + "Z"
