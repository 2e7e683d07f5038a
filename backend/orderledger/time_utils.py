from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - naive input is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime to ISO-8601 with trailing 'Z'.
    Naive values are treated as UTC. Microseconds are kept so keyset
    cursors built from this string round-trip exactly.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def format_cursor(dt: datetime, row_id: int) -> str:
    """Keyset pagination cursor: '<ISO-8601>|<id>'."""
    return f"{to_utc_z(dt)}|{row_id}"


def parse_cursor(raw: Optional[str]) -> tuple[Optional[datetime], Optional[int]]:
    """Inverse of format_cursor. Raises ValueError on malformed input."""
    if not raw:
        return None, None
    parts = raw.split("|")
    if len(parts) != 2:
        raise ValueError("cursor must be in format <ISO-8601>|<id>")
    return parse_iso_datetime(parts[0]), int(parts[1])


def date_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD for the given (UTC) datetime, default today."""
    return (dt or utcnow()).strftime("%Y%m%d")
