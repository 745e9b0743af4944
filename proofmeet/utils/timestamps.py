# proofmeet/utils/timestamps.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def ensure_utc(value: datetime) -> datetime:
    """
    Return an aware UTC datetime. Naive values are assumed to already be UTC
    (SQLite hands back naive datetimes for timezone-aware columns).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_utc(value: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC.

    Returns None if parsing fails.
    """
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(dt)


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """
    Accept a datetime, an ISO-8601 string or UNIX epoch seconds.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        return parse_iso_utc(value)
    return None


def canonical_timestamp(value: datetime) -> str:
    """
    Stable textual form used inside integrity hashes: UTC, no offset suffix
    other than a trailing 'Z', microseconds only when present.
    """
    return ensure_utc(value).replace(tzinfo=None).isoformat() + "Z"
