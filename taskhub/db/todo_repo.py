"""Repository for ``todos`` and their ``checklist_items``."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from taskhub.db.database import Database
from taskhub.db.project_repo import _require_name
from taskhub.models.task import Priority
from taskhub.models.todo import ChecklistItem, Todo, TodoStatus
from taskhub.utils.timefmt import to_db_time, utcnow

# project filter value selecting to-dos without a project
INBOX = "inbox"

# allow-listed ORDER BY columns
TODO_SORT_COLUMNS = frozenset({"sort_order", "priority", "due_date", "created_at", "updated_at", "title"})
DEFAULT_TODO_SORT = "sort_order"

_TODO_COLUMNS = (
    "id", "title", "description", "status", "priority", "due_date", "sort_order",
    "project_id", "created_at", "completed_at", "updated_at",
)
_ITEM_COLUMNS = ("id", "todo_id", "text", "checked", "sort_order", "created_at")

_CHECKLIST_COUNTS = (
    "(SELECT COUNT(*) FROM checklist_items c WHERE c.todo_id = todos.id) AS checklist_count, "
    "(SELECT COUNT(*) FROM checklist_items c WHERE c.todo_id = todos.id AND c.checked = 1) "
    "AS checklist_done_count"
)


class DueWindow(str, Enum):
    TODAY = "today"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"


@dataclass
class TodoFilter:
    status: Optional[TodoStatus] = None
    priority: Optional[int] = None
    project_id: Optional[str] = None
    tag_ids: list[str] = field(default_factory=list)
    query: str = ""
    due: Optional[DueWindow] = None
    sort_by: str = DEFAULT_TODO_SORT
    sort_desc: bool = False
    limit: int = 0
    offset: int = 0


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _where(flt: TodoFilter, now: datetime) -> tuple[str, str, list[Any]]:
    """FROM clause, WHERE clause and parameters for ``flt``."""
    joins = ""
    clauses: list[str] = []
    params: list[Any] = []

    if flt.tag_ids:
        joins = " INNER JOIN todo_tags ON todos.id = todo_tags.todo_id"
        clauses.append(f"todo_tags.tag_id IN ({', '.join('?' for _ in flt.tag_ids)})")
        params.extend(flt.tag_ids)
    if flt.status:
        clauses.append("todos.status = ?")
        params.append(TodoStatus(flt.status).value)
    if flt.priority:
        clauses.append("todos.priority = ?")
        params.append(int(flt.priority))
    if flt.project_id == INBOX:
        clauses.append("todos.project_id IS NULL")
    elif flt.project_id:
        clauses.append("todos.project_id = ?")
        params.append(flt.project_id)
    if flt.query:
        clauses.append("(todos.title LIKE ? OR todos.description LIKE ?)")
        pattern = f"%{flt.query}%"
        params.extend([pattern, pattern])
    if flt.due:
        today = _start_of_day(now)
        window = DueWindow(flt.due)
        if window == DueWindow.OVERDUE:
            clauses.append("todos.due_date < ? AND todos.status != 'complete'")
            params.append(to_db_time(today))
        else:
            days = 1 if window == DueWindow.TODAY else 7
            clauses.append("todos.due_date >= ? AND todos.due_date < ?")
            params.extend([to_db_time(today), to_db_time(today + timedelta(days=days))])

    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return f" FROM todos{joins}", where, params


class TodoRepository:
    def __init__(self, db: Database):
        self._db = db

    # -- To-dos ----------------------------------------------------------------

    def create(self, todo: Todo) -> Todo:
        _require_name(todo.title, "todo title")
        todo.created_at = todo.updated_at = utcnow()
        if not 1 <= int(todo.priority) <= 5:
            todo.priority = int(Priority.MEDIUM)
        if todo.status == TodoStatus.COMPLETE and todo.completed_at is None:
            todo.completed_at = todo.created_at
        with self._db.transaction() as conn:
            if todo.sort_order == 0:
                row = conn.execute("SELECT COALESCE(MAX(sort_order), 0) FROM todos").fetchone()
                todo.sort_order = int(row[0]) + 1
            row = todo.to_row()
            conn.execute(
                f"INSERT INTO todos ({', '.join(_TODO_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _TODO_COLUMNS)})",
                tuple(row[c] for c in _TODO_COLUMNS),
            )
        return todo

    def update(self, todo: Todo) -> bool:
        """Rewrite every mutable field; ``completed_at`` follows ``status``."""
        _require_name(todo.title, "todo title")
        todo.updated_at = utcnow()
        if todo.status == TodoStatus.COMPLETE and todo.completed_at is None:
            todo.completed_at = todo.updated_at
        elif todo.status == TodoStatus.OPEN:
            todo.completed_at = None
        row = todo.to_row()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE todos SET title = ?, description = ?, status = ?, priority = ?,
                       due_date = ?, sort_order = ?, project_id = ?,
                       completed_at = ?, updated_at = ?
                   WHERE id = ?""",
                (row["title"], row["description"], row["status"], row["priority"],
                 row["due_date"], row["sort_order"], row["project_id"],
                 row["completed_at"], row["updated_at"], row["id"]),
            )
        return cursor.rowcount > 0

    def delete(self, todo_id: str) -> bool:
        """Remove a to-do with its checklist, tag associations and links."""
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM todos WHERE id = ?", (todo_id,))
        return cursor.rowcount > 0

    def get_by_id(self, todo_id: str) -> Optional[Todo]:
        row = self._db.fetchone(
            f"SELECT todos.*, {_CHECKLIST_COUNTS} FROM todos WHERE id = ?", (todo_id,)
        )
        return Todo.from_row(row) if row else None

    def find(self, flt: Optional[TodoFilter] = None, now: Optional[datetime] = None) -> list[Todo]:
        flt = flt or TodoFilter()
        source, where, params = _where(flt, now or utcnow())
        sql = f"SELECT todos.*, {_CHECKLIST_COUNTS}{source}{where}"
        if flt.tag_ids:
            sql += " GROUP BY todos.id"
        sort_col = flt.sort_by if flt.sort_by in TODO_SORT_COLUMNS else DEFAULT_TODO_SORT
        direction = "DESC" if flt.sort_desc else "ASC"
        sql += f" ORDER BY todos.{sort_col} {direction}, todos.id ASC"
        if flt.limit > 0:
            sql += " LIMIT ? OFFSET ?"
            params.extend([flt.limit, max(flt.offset, 0)])
        elif flt.offset > 0:
            sql += " LIMIT -1 OFFSET ?"
            params.append(flt.offset)
        rows = self._db.fetchall(sql, tuple(params))
        return [Todo.from_row(r) for r in rows]

    def count(self, flt: Optional[TodoFilter] = None, now: Optional[datetime] = None) -> int:
        source, where, params = _where(flt or TodoFilter(), now or utcnow())
        row = self._db.fetchone(f"SELECT COUNT(DISTINCT todos.id) AS n{source}{where}", tuple(params))
        return int(row["n"]) if row else 0

    def reorder(self, todo_id: str, sort_order: int) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE todos SET sort_order = ?, updated_at = ? WHERE id = ?",
                (sort_order, to_db_time(utcnow()), todo_id),
            )
        return cursor.rowcount > 0

    # -- Checklist -------------------------------------------------------------

    def add_item(self, item: ChecklistItem) -> ChecklistItem:
        _require_name(item.text, "checklist item text")
        item.created_at = utcnow()
        with self._db.transaction() as conn:
            if item.sort_order == 0:
                row = conn.execute(
                    "SELECT COALESCE(MAX(sort_order), 0) FROM checklist_items WHERE todo_id = ?",
                    (item.todo_id,),
                ).fetchone()
                item.sort_order = int(row[0]) + 1
            row = item.to_row()
            conn.execute(
                f"INSERT INTO checklist_items ({', '.join(_ITEM_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _ITEM_COLUMNS)})",
                tuple(row[c] for c in _ITEM_COLUMNS),
            )
        return item

    def update_item(self, item: ChecklistItem) -> bool:
        _require_name(item.text, "checklist item text")
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE checklist_items SET text = ?, checked = ? WHERE id = ?",
                (item.text, 1 if item.checked else 0, item.id),
            )
        return cursor.rowcount > 0

    def delete_item(self, item_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM checklist_items WHERE id = ?", (item_id,))
        return cursor.rowcount > 0

    def toggle_item(self, item_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE checklist_items SET checked = CASE WHEN checked = 0 THEN 1 ELSE 0 END "
                "WHERE id = ?",
                (item_id,),
            )
        return cursor.rowcount > 0

    def reorder_item(self, item_id: str, sort_order: int) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE checklist_items SET sort_order = ? WHERE id = ?", (sort_order, item_id)
            )
        return cursor.rowcount > 0

    def items_for(self, todo_id: str) -> list[ChecklistItem]:
        rows = self._db.fetchall(
            "SELECT * FROM checklist_items WHERE todo_id = ? ORDER BY sort_order, created_at",
            (todo_id,),
        )
        return [ChecklistItem.from_row(r) for r in rows]
