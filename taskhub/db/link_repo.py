"""Repository for ``links`` between local to-dos and cached tasks."""

from __future__ import annotations

from taskhub.db.database import Database
from taskhub.models.todo import Link

_COLUMNS = ("id", "todo_id", "task_id", "link_type", "created_at")


class LinkRepository:
    def __init__(self, db: Database):
        self._db = db

    def create(self, link: Link) -> Link:
        """Insert a link; a second link for the same pair violates UNIQUE."""
        row = link.to_row()
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO links ({', '.join(_COLUMNS)}) VALUES (?, ?, ?, ?, ?)",
                tuple(row[c] for c in _COLUMNS),
            )
        return link

    def delete(self, link_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM links WHERE id = ?", (link_id,))
        return cursor.rowcount > 0

    def for_todo(self, todo_id: str) -> list[Link]:
        rows = self._db.fetchall(
            """SELECT l.*, COALESCE(t.title, '') AS task_title
               FROM links l
               LEFT JOIN tasks t ON l.task_id = t.id
               WHERE l.todo_id = ?
               ORDER BY l.created_at, l.id""",
            (todo_id,),
        )
        return [Link.from_row(r) for r in rows]

    def for_task(self, task_id: str) -> list[Link]:
        rows = self._db.fetchall(
            """SELECT l.*, COALESCE(td.title, '') AS todo_title
               FROM links l
               LEFT JOIN todos td ON l.todo_id = td.id
               WHERE l.task_id = ?
               ORDER BY l.created_at, l.id""",
            (task_id,),
        )
        return [Link.from_row(r) for r in rows]
