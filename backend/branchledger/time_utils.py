# Overview: UTC clock, ISO-8601 parsing/serialization and day stamps for folios.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse client-supplied ISO-8601 text into naive UTC.

    Blank input gives None. Offsets (including a trailing Z) are converted;
    text without an offset is taken as UTC already. Malformed text raises
    ValueError for the caller to map.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render as second-precision ISO-8601 with a trailing Z."""
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def day_stamp(dt: Optional[datetime] = None) -> str:
    """Calendar day as YYMMDD, used to scope day-based sequences."""
    return (dt or utcnow()).strftime("%y%m%d")
