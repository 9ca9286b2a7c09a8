"""Repository for the ``tasks`` table: idempotent batch upserts and filtered reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from taskhub.db.database import Database
from taskhub.models.task import SourceType, Task, TaskStatus
from taskhub.utils.timefmt import to_db_time, utcnow

# Only these column names are ever interpolated into ORDER BY.
SORT_COLUMNS = frozenset({"title", "status", "priority", "created_at", "updated_at", "fetched_at"})
DEFAULT_SORT = "updated_at"

# Stay well below SQLite's host-parameter limit.
_ID_CHUNK = 500

_COLUMNS = (
    "id", "source_type", "source_item_id", "source_id", "title", "description",
    "status", "priority", "assignee", "author", "source_url",
    "created_at", "updated_at", "fetched_at", "raw_data", "cross_refs",
)


@dataclass
class TaskFilter:
    source_type: Optional[SourceType] = None
    source_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    query: str = ""
    sort_by: str = DEFAULT_SORT
    sort_desc: bool = True
    limit: int = 0
    offset: int = 0


class TaskRepository:
    """Single-Responsibility repository for task persistence."""

    def __init__(self, db: Database):
        self._db = db

    # -- Upsert ----------------------------------------------------------------

    def upsert_many(self, tasks: Iterable[Task]) -> int:
        """Insert-or-replace every task in one transaction (all or nothing)."""
        rows = [t.to_row() for t in tasks]
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in _COLUMNS)
        sql = f"INSERT OR REPLACE INTO tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders})"
        with self._db.transaction() as conn:
            conn.executemany(sql, [tuple(r[c] for c in _COLUMNS) for r in rows])
        return len(rows)

    # -- Read ------------------------------------------------------------------

    def get_by_id(self, task_id: str) -> Optional[Task]:
        row = self._db.fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return Task.from_row(row) if row else None

    def existing_ids(self, task_ids: Iterable[str]) -> set[str]:
        """Subset of ``task_ids`` already cached, via primary-key lookups."""
        ids = list(dict.fromkeys(task_ids))
        found: set[str] = set()
        for start in range(0, len(ids), _ID_CHUNK):
            chunk = ids[start:start + _ID_CHUNK]
            marks = ", ".join("?" for _ in chunk)
            rows = self._db.fetchall(f"SELECT id FROM tasks WHERE id IN ({marks})", tuple(chunk))
            found.update(r["id"] for r in rows)
        return found

    # -- List / Filter ---------------------------------------------------------

    def find(self, flt: Optional[TaskFilter] = None) -> list[Task]:
        flt = flt or TaskFilter()
        clauses: list[str] = []
        params: list[Any] = []
        if flt.source_type:
            clauses.append("source_type = ?")
            params.append(SourceType(flt.source_type).value)
        if flt.source_id:
            clauses.append("source_id = ?")
            params.append(flt.source_id)
        if flt.status:
            clauses.append("status = ?")
            params.append(TaskStatus(flt.status).value)
        if flt.priority:
            clauses.append("priority = ?")
            params.append(int(flt.priority))
        if flt.query:
            clauses.append("(title LIKE ? OR description LIKE ?)")
            pattern = f"%{flt.query}%"
            params.extend([pattern, pattern])

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sort_col = flt.sort_by if flt.sort_by in SORT_COLUMNS else DEFAULT_SORT
        direction = "DESC" if flt.sort_desc else "ASC"
        sql = f"SELECT * FROM tasks{where} ORDER BY {sort_col} {direction}, id ASC"
        if flt.limit > 0:
            sql += " LIMIT ? OFFSET ?"
            params.extend([flt.limit, max(flt.offset, 0)])
        elif flt.offset > 0:
            sql += " LIMIT -1 OFFSET ?"
            params.append(flt.offset)

        rows = self._db.fetchall(sql, tuple(params))
        return [Task.from_row(r) for r in rows]

    def get_stale(
        self,
        max_age: timedelta,
        source_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Task]:
        """Tasks whose ``fetched_at`` is older than ``now - max_age``, oldest first."""
        cutoff = to_db_time((now or utcnow()) - max_age)
        if source_id:
            rows = self._db.fetchall(
                "SELECT * FROM tasks WHERE fetched_at < ? AND source_id = ? ORDER BY fetched_at ASC",
                (cutoff, source_id),
            )
        else:
            rows = self._db.fetchall(
                "SELECT * FROM tasks WHERE fetched_at < ? ORDER BY fetched_at ASC",
                (cutoff,),
            )
        return [Task.from_row(r) for r in rows]

    def count(self, source_type: Optional[SourceType] = None) -> int:
        if source_type:
            row = self._db.fetchone(
                "SELECT COUNT(*) AS n FROM tasks WHERE source_type = ?",
                (SourceType(source_type).value,),
            )
        else:
            row = self._db.fetchone("SELECT COUNT(*) AS n FROM tasks")
        return int(row["n"]) if row else 0
