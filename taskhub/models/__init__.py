"""Domain models for the unified task cache and the local work layer."""

from taskhub.models.task import Task, TaskStatus, Priority, SourceType, clamp_priority
from taskhub.models.source_config import SourceConfig, DEFAULT_POLL_INTERVAL_SEC
from taskhub.models.notification import Notification
from taskhub.models.todo import ChecklistItem, Link, LinkType, Project, Tag, Todo, TodoStatus

__all__ = [
    "Task", "TaskStatus", "Priority", "SourceType", "clamp_priority",
    "SourceConfig", "DEFAULT_POLL_INTERVAL_SEC",
    "Notification",
    "Todo", "TodoStatus", "ChecklistItem", "Project", "Tag", "Link", "LinkType",
]
