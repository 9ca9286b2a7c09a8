"""Store façade: the persistence contract used by the poller and the CLI.

Every public method wraps ``sqlite3`` failures in :class:`StoreError`
naming the operation, so callers never need to import ``sqlite3``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from functools import wraps
from pathlib import Path
from typing import Iterable, Optional

from taskhub.db.database import Database, open_database
from taskhub.db.link_repo import LinkRepository
from taskhub.db.notification_repo import NotificationRepository
from taskhub.db.project_repo import ProjectRepository, TagRepository
from taskhub.db.source_repo import SourceRepository
from taskhub.db.task_repo import TaskFilter, TaskRepository
from taskhub.db.todo_repo import TodoFilter, TodoRepository
from taskhub.errors import StoreError
from taskhub.models.notification import Notification
from taskhub.models.source_config import SourceConfig
from taskhub.models.task import SourceType, Task
from taskhub.models.todo import ChecklistItem, Link, LinkType, Project, Tag, Todo

logger = logging.getLogger(__name__)


def _store_op(operation: str):
    """Re-raise sqlite errors from the wrapped method as StoreError."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except sqlite3.Error as e:
                raise StoreError(f"{operation} failed: {e}") from e
        return wrapper
    return decorator


class Store:
    def __init__(self, db: Database):
        self.db = db
        self.tasks = TaskRepository(db)
        self.sources = SourceRepository(db)
        self.notifications = NotificationRepository(db)
        self.projects = ProjectRepository(db)
        self.todos = TodoRepository(db)
        self.tags = TagRepository(db)
        self.links = LinkRepository(db)

    @property
    def path(self) -> str:
        return str(self.db.path)

    def close(self) -> None:
        self.db.close()

    # -- Tasks -----------------------------------------------------------------

    @_store_op("upsert tasks")
    def upsert_tasks(self, tasks: Iterable[Task]) -> int:
        return self.tasks.upsert_many(tasks)

    @_store_op("get tasks")
    def get_tasks(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        return self.tasks.find(flt)

    @_store_op("get task")
    def get_task_by_id(self, task_id: str) -> Optional[Task]:
        return self.tasks.get_by_id(task_id)

    @_store_op("look up task ids")
    def existing_task_ids(self, task_ids: Iterable[str]) -> set[str]:
        return self.tasks.existing_ids(task_ids)

    @_store_op("get stale tasks")
    def get_stale_tasks(
        self,
        max_age: timedelta,
        source_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Task]:
        return self.tasks.get_stale(max_age, source_id=source_id, now=now)

    @_store_op("count tasks")
    def count_tasks(self, source_type: Optional[SourceType] = None) -> int:
        return self.tasks.count(source_type)

    # -- Sources ---------------------------------------------------------------

    @_store_op("upsert source")
    def upsert_source(self, cfg: SourceConfig) -> SourceConfig:
        return self.sources.upsert(cfg)

    @_store_op("get sources")
    def get_sources(self, enabled_only: bool = False) -> list[SourceConfig]:
        return self.sources.list_all(enabled_only=enabled_only)

    @_store_op("get source")
    def get_source(self, source_id: str) -> Optional[SourceConfig]:
        return self.sources.get_by_id(source_id)

    @_store_op("delete source")
    def delete_source(self, source_id: str) -> bool:
        return self.sources.delete(source_id)

    @_store_op("record sync result")
    def record_sync_result(
        self, source_id: str, last_sync_at: Optional[datetime], last_error: str = ""
    ) -> bool:
        return self.sources.record_sync(source_id, last_sync_at, last_error)

    # -- Notifications ---------------------------------------------------------

    @_store_op("create notification")
    def create_notification(self, notification: Notification) -> Notification:
        return self.notifications.create(notification)

    @_store_op("get unread notifications")
    def get_unread_notifications(self) -> list[Notification]:
        return self.notifications.get_unread()

    @_store_op("mark notification read")
    def mark_notification_read(self, notification_id: str) -> bool:
        return self.notifications.mark_read(notification_id)

    @_store_op("mark all notifications read")
    def mark_all_notifications_read(self) -> int:
        return self.notifications.mark_all_read()

    @_store_op("count unread notifications")
    def count_unread_notifications(self) -> int:
        return self.notifications.count_unread()

    # -- Projects --------------------------------------------------------------

    @_store_op("create project")
    def create_project(self, project: Project) -> Project:
        return self.projects.create(project)

    @_store_op("update project")
    def update_project(self, project: Project) -> bool:
        return self.projects.update(project)

    @_store_op("delete project")
    def delete_project(self, project_id: str) -> bool:
        return self.projects.delete(project_id)

    @_store_op("get project")
    def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get_by_id(project_id)

    @_store_op("get projects")
    def get_projects(self, include_archived: bool = False) -> list[Project]:
        return self.projects.list_all(include_archived=include_archived)

    @_store_op("archive project")
    def archive_project(self, project_id: str) -> bool:
        return self.projects.set_archived(project_id, True)

    @_store_op("restore project")
    def restore_project(self, project_id: str) -> bool:
        return self.projects.set_archived(project_id, False)

    # -- To-dos ----------------------------------------------------------------

    @_store_op("create todo")
    def create_todo(self, todo: Todo) -> Todo:
        return self.todos.create(todo)

    @_store_op("update todo")
    def update_todo(self, todo: Todo) -> bool:
        return self.todos.update(todo)

    @_store_op("delete todo")
    def delete_todo(self, todo_id: str) -> bool:
        return self.todos.delete(todo_id)

    @_store_op("get todo")
    def get_todo(self, todo_id: str) -> Optional[Todo]:
        todo = self.todos.get_by_id(todo_id)
        if todo is not None:
            todo.tags = self.tags.for_todo(todo.id)
        return todo

    @_store_op("get todos")
    def get_todos(self, flt: Optional[TodoFilter] = None, now: Optional[datetime] = None) -> list[Todo]:
        todos = self.todos.find(flt, now=now)
        for todo in todos:
            todo.tags = self.tags.for_todo(todo.id)
        return todos

    @_store_op("count todos")
    def count_todos(self, flt: Optional[TodoFilter] = None, now: Optional[datetime] = None) -> int:
        return self.todos.count(flt, now=now)

    @_store_op("reorder todo")
    def reorder_todo(self, todo_id: str, sort_order: int) -> bool:
        return self.todos.reorder(todo_id, sort_order)

    # -- Checklist items -------------------------------------------------------

    @_store_op("add checklist item")
    def add_checklist_item(self, item: ChecklistItem) -> ChecklistItem:
        return self.todos.add_item(item)

    @_store_op("update checklist item")
    def update_checklist_item(self, item: ChecklistItem) -> bool:
        return self.todos.update_item(item)

    @_store_op("delete checklist item")
    def delete_checklist_item(self, item_id: str) -> bool:
        return self.todos.delete_item(item_id)

    @_store_op("get checklist items")
    def get_checklist_items(self, todo_id: str) -> list[ChecklistItem]:
        return self.todos.items_for(todo_id)

    @_store_op("toggle checklist item")
    def toggle_checklist_item(self, item_id: str) -> bool:
        return self.todos.toggle_item(item_id)

    @_store_op("reorder checklist item")
    def reorder_checklist_item(self, item_id: str, sort_order: int) -> bool:
        return self.todos.reorder_item(item_id, sort_order)

    # -- Tags ------------------------------------------------------------------

    @_store_op("create tag")
    def create_tag(self, tag: Tag) -> Tag:
        return self.tags.create(tag)

    @_store_op("update tag")
    def update_tag(self, tag: Tag) -> bool:
        return self.tags.update(tag)

    @_store_op("delete tag")
    def delete_tag(self, tag_id: str) -> bool:
        return self.tags.delete(tag_id)

    @_store_op("get tags")
    def get_tags(self) -> list[Tag]:
        return self.tags.list_all()

    @_store_op("get todo tags")
    def get_tags_for_todo(self, todo_id: str) -> list[Tag]:
        return self.tags.for_todo(todo_id)

    @_store_op("set todo tags")
    def set_todo_tags(self, todo_id: str, tag_ids: Iterable[str]) -> None:
        self.tags.set_for_todo(todo_id, tag_ids)

    # -- Links -----------------------------------------------------------------

    @_store_op("create link")
    def create_link(self, todo_id: str, task_id: str, link_type: LinkType = LinkType.MANUAL) -> Link:
        return self.links.create(Link(todo_id=todo_id, task_id=task_id, link_type=link_type))

    @_store_op("delete link")
    def delete_link(self, link_id: str) -> bool:
        return self.links.delete(link_id)

    @_store_op("get links for todo")
    def get_links_for_todo(self, todo_id: str) -> list[Link]:
        return self.links.for_todo(todo_id)

    @_store_op("get links for task")
    def get_links_for_task(self, task_id: str) -> list[Link]:
        return self.links.for_task(task_id)


def open_store(path: Optional[Path | str] = None) -> Store:
    """Open (creating and migrating if needed) the store at ``path``.

    Raises StoreError when the database cannot be created or migrated.
    """
    db = open_database(path)
    logger.info(f"Store opened at {db.path}")
    return Store(db)
