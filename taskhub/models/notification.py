"""Notification raised when a sync cycle sees a task id for the first time."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from taskhub.models.task import SourceType
from taskhub.utils.timefmt import from_db_time, to_db_time, utcnow


@dataclass
class Notification:
    task_id: str
    source_type: SourceType
    message: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    read: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "source_type": SourceType(self.source_type).value,
            "message": self.message,
            "read": 1 if self.read else 0,
            "created_at": to_db_time(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Notification":
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            source_type=SourceType(row["source_type"]),
            message=row["message"],
            read=bool(row.get("read", 0)),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
        )
