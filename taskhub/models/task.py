"""Task domain model: the normalised work item every adapter produces."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any, Optional

from taskhub.utils.timefmt import from_db_time, to_db_time, utcnow


class SourceType(str, Enum):
    JIRA = "jira"
    BITBUCKET = "bitbucket"
    EMAIL = "email"


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class Priority(IntEnum):
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4
    LOWEST = 5


def clamp_priority(value: Any) -> int:
    """Coerce any value into the 1 (most urgent) .. 5 range."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return int(Priority.MEDIUM)
    return max(int(Priority.CRITICAL), min(int(Priority.LOWEST), number))


@dataclass
class Task:
    """A remote work item, cached locally.

    ``id`` is derived deterministically by the adapter from the remote
    identifier, so re-fetching the same item always lands on the same row.
    """

    id: str
    source_type: SourceType
    source_item_id: str
    source_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.OPEN
    priority: int = int(Priority.MEDIUM)
    assignee: str = ""
    author: str = ""
    source_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    fetched_at: datetime = field(default_factory=utcnow)
    raw_data: str = ""
    cross_refs: list[str] = field(default_factory=list)

    def cross_refs_json(self) -> str:
        return json.dumps(self.cross_refs)

    @staticmethod
    def parse_cross_refs(raw: Optional[str]) -> list[str]:
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return []
        return [str(v) for v in value] if isinstance(value, list) else []

    def staleness(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.fetched_at

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        return self.staleness(now) > max_age

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_type": SourceType(self.source_type).value,
            "source_item_id": self.source_item_id,
            "source_id": self.source_id,
            "title": self.title,
            "description": self.description,
            "status": TaskStatus(self.status).value,
            "priority": clamp_priority(self.priority),
            "assignee": self.assignee,
            "author": self.author,
            "source_url": self.source_url,
            "created_at": to_db_time(self.created_at),
            "updated_at": to_db_time(self.updated_at),
            "fetched_at": to_db_time(self.fetched_at),
            "raw_data": self.raw_data,
            "cross_refs": self.cross_refs_json(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Task":
        return cls(
            id=row["id"],
            source_type=SourceType(row["source_type"]),
            source_item_id=row["source_item_id"],
            source_id=row["source_id"],
            title=row["title"],
            description=row.get("description") or "",
            status=TaskStatus(row.get("status") or "open"),
            priority=clamp_priority(row.get("priority")),
            assignee=row.get("assignee") or "",
            author=row.get("author") or "",
            source_url=row.get("source_url") or "",
            created_at=from_db_time(row.get("created_at")),
            updated_at=from_db_time(row.get("updated_at")),
            fetched_at=from_db_time(row.get("fetched_at")) or utcnow(),
            raw_data=row.get("raw_data") or "",
            cross_refs=cls.parse_cross_refs(row.get("cross_refs")),
        )
