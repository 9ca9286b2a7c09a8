"""Repositories for ``projects`` and ``tags``."""

from __future__ import annotations

from typing import Iterable, Optional

from taskhub.db.database import Database
from taskhub.models.todo import Project, Tag
from taskhub.utils.timefmt import to_db_time, utcnow

_PROJECT_COLUMNS = (
    "id", "name", "description", "color", "icon", "archived", "sort_order",
    "created_at", "updated_at",
)


def _require_name(value: str, what: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{what} must not be empty")


class ProjectRepository:
    def __init__(self, db: Database):
        self._db = db

    def create(self, project: Project) -> Project:
        _require_name(project.name, "project name")
        project.created_at = project.updated_at = utcnow()
        with self._db.transaction() as conn:
            if project.sort_order == 0:
                row = conn.execute("SELECT COALESCE(MAX(sort_order), 0) FROM projects").fetchone()
                project.sort_order = int(row[0]) + 1
            row = project.to_row()
            conn.execute(
                f"INSERT INTO projects ({', '.join(_PROJECT_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _PROJECT_COLUMNS)})",
                tuple(row[c] for c in _PROJECT_COLUMNS),
            )
        return project

    def update(self, project: Project) -> bool:
        _require_name(project.name, "project name")
        project.updated_at = utcnow()
        row = project.to_row()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE projects SET name = ?, description = ?, color = ?, icon = ?,
                       archived = ?, sort_order = ?, updated_at = ?
                   WHERE id = ?""",
                (row["name"], row["description"], row["color"], row["icon"],
                 row["archived"], row["sort_order"], row["updated_at"], row["id"]),
            )
        return cursor.rowcount > 0

    def delete(self, project_id: str) -> bool:
        """Remove a project; its to-dos fall back to the inbox."""
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        return cursor.rowcount > 0

    def get_by_id(self, project_id: str) -> Optional[Project]:
        row = self._db.fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        return Project.from_row(row) if row else None

    def list_all(self, include_archived: bool = False) -> list[Project]:
        if include_archived:
            rows = self._db.fetchall("SELECT * FROM projects ORDER BY sort_order, name")
        else:
            rows = self._db.fetchall(
                "SELECT * FROM projects WHERE archived = 0 ORDER BY sort_order, name"
            )
        return [Project.from_row(r) for r in rows]

    def set_archived(self, project_id: str, archived: bool) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE projects SET archived = ?, updated_at = ? WHERE id = ?",
                (1 if archived else 0, to_db_time(utcnow()), project_id),
            )
        return cursor.rowcount > 0


class TagRepository:
    def __init__(self, db: Database):
        self._db = db

    def create(self, tag: Tag) -> Tag:
        _require_name(tag.name, "tag name")
        tag.created_at = utcnow()
        row = tag.to_row()
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO tags (id, name, color, created_at) VALUES (?, ?, ?, ?)",
                (row["id"], row["name"], row["color"], row["created_at"]),
            )
        return tag

    def update(self, tag: Tag) -> bool:
        _require_name(tag.name, "tag name")
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE tags SET name = ?, color = ? WHERE id = ?",
                (tag.name, tag.color, tag.id),
            )
        return cursor.rowcount > 0

    def delete(self, tag_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        return cursor.rowcount > 0

    def list_all(self) -> list[Tag]:
        rows = self._db.fetchall("SELECT * FROM tags ORDER BY name")
        return [Tag.from_row(r) for r in rows]

    def for_todo(self, todo_id: str) -> list[Tag]:
        rows = self._db.fetchall(
            """SELECT t.* FROM tags t
               INNER JOIN todo_tags tt ON t.id = tt.tag_id
               WHERE tt.todo_id = ?
               ORDER BY t.name""",
            (todo_id,),
        )
        return [Tag.from_row(r) for r in rows]

    def set_for_todo(self, todo_id: str, tag_ids: Iterable[str]) -> None:
        """Replace every tag on ``todo_id`` in one transaction."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM todo_tags WHERE todo_id = ?", (todo_id,))
            conn.executemany(
                "INSERT INTO todo_tags (todo_id, tag_id) VALUES (?, ?)",
                [(todo_id, tag_id) for tag_id in dict.fromkeys(tag_ids)],
            )
