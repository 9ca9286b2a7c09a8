"""UTC timestamp helpers for the SQLite layer.

Stored timestamps are fixed-width ISO-8601 strings in UTC so that plain
string comparison in SQL orders them chronologically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return ensure_utc(value).strftime(DB_TIME_FORMAT)


def from_db_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, DB_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        # rows written by hand or by older tooling
        return ensure_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def from_epoch_ms(ms: Optional[int]) -> Optional[datetime]:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
