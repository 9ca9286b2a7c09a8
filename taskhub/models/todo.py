"""Local to-do items, their checklists, projects, tags and task links.

These rows belong to the user. The poller never touches them; a link is
the only bridge from a to-do to a cached remote task.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from taskhub.models.task import Priority
from taskhub.utils.timefmt import from_db_time, to_db_time, utcnow


class TodoStatus(str, Enum):
    OPEN = "open"
    COMPLETE = "complete"


class LinkType(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


def _nullable_time(value: Optional[datetime]) -> Optional[str]:
    return to_db_time(value) or None


@dataclass
class Project:
    name: str
    description: str = ""
    color: str = ""
    icon: str = ""
    archived: bool = False
    sort_order: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "archived": 1 if self.archived else 0,
            "sort_order": self.sort_order,
            "created_at": to_db_time(self.created_at),
            "updated_at": to_db_time(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Project":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row.get("description") or "",
            color=row.get("color") or "",
            icon=row.get("icon") or "",
            archived=bool(row.get("archived", 0)),
            sort_order=int(row.get("sort_order") or 0),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
            updated_at=from_db_time(row.get("updated_at")) or utcnow(),
        )


@dataclass
class Tag:
    name: str
    color: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": to_db_time(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Tag":
        return cls(
            id=row["id"],
            name=row["name"],
            color=row.get("color") or "",
            created_at=from_db_time(row.get("created_at")) or utcnow(),
        )


@dataclass
class Todo:
    """A to-do the user manages locally.

    ``completed_at`` follows ``status``: it is stamped when the to-do is
    completed and cleared when it is reopened. ``project_id`` None means
    the inbox.
    """

    title: str
    description: str = ""
    status: TodoStatus = TodoStatus.OPEN
    priority: int = int(Priority.MEDIUM)
    due_date: Optional[datetime] = None
    sort_order: int = 0
    project_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    # filled in by reads, never written
    tags: list[Tag] = field(default_factory=list)
    checklist_count: int = 0
    checklist_done_count: int = 0

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": TodoStatus(self.status).value,
            "priority": self.priority,
            "due_date": _nullable_time(self.due_date),
            "sort_order": self.sort_order,
            "project_id": self.project_id or None,
            "created_at": to_db_time(self.created_at),
            "completed_at": _nullable_time(self.completed_at),
            "updated_at": to_db_time(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Todo":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row.get("description") or "",
            status=TodoStatus(row.get("status") or TodoStatus.OPEN.value),
            priority=int(row.get("priority") or int(Priority.MEDIUM)),
            due_date=from_db_time(row.get("due_date")),
            sort_order=int(row.get("sort_order") or 0),
            project_id=row.get("project_id"),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
            completed_at=from_db_time(row.get("completed_at")),
            updated_at=from_db_time(row.get("updated_at")) or utcnow(),
            checklist_count=int(row.get("checklist_count") or 0),
            checklist_done_count=int(row.get("checklist_done_count") or 0),
        )

    @property
    def is_complete(self) -> bool:
        return self.status == TodoStatus.COMPLETE


@dataclass
class ChecklistItem:
    """A sub-entry of a to-do; deleted together with its parent."""

    todo_id: str
    text: str
    checked: bool = False
    sort_order: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "todo_id": self.todo_id,
            "text": self.text,
            "checked": 1 if self.checked else 0,
            "sort_order": self.sort_order,
            "created_at": to_db_time(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ChecklistItem":
        return cls(
            id=row["id"],
            todo_id=row["todo_id"],
            text=row["text"],
            checked=bool(row.get("checked", 0)),
            sort_order=int(row.get("sort_order") or 0),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
        )


@dataclass
class Link:
    """Joins a local to-do to a cached task by task id.

    The task side is not a foreign key: a link survives the task leaving
    the cache. ``task_title`` / ``todo_title`` are filled in by reads.
    """

    todo_id: str
    task_id: str
    link_type: LinkType = LinkType.MANUAL
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    task_title: str = ""
    todo_title: str = ""

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "todo_id": self.todo_id,
            "task_id": self.task_id,
            "link_type": LinkType(self.link_type).value,
            "created_at": to_db_time(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Link":
        return cls(
            id=row["id"],
            todo_id=row["todo_id"],
            task_id=row["task_id"],
            link_type=LinkType(row.get("link_type") or LinkType.MANUAL.value),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
            task_title=row.get("task_title") or "",
            todo_title=row.get("todo_title") or "",
        )
