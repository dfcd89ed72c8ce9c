from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


UNSPECIFIED_DATE = "unspecified"


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


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


def to_calendar_date(value) -> Optional[date]:
    """
    Truncate a date-ish value to a calendar date.

    Accepts date, datetime (aware values are converted to UTC first) and
    strings. Strings only need a leading YYYY-MM-DD; anything after it
    ("T10:00:00Z", " 00:00:00+00") is ignored. Returns None when the value
    cannot be read as a date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if len(s) < 10:
            return None
        try:
            return date.fromisoformat(s[:10])
        except ValueError:
            return None
    return None


def date_key(value) -> str:
    """Calendar date as a 'YYYY-MM-DD' grouping key, or 'unspecified'."""
    d = to_calendar_date(value)
    return d.isoformat() if d else UNSPECIFIED_DATE
