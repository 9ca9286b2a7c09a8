"""Repository for the ``notifications`` table."""

from __future__ import annotations

from taskhub.db.database import Database
from taskhub.models.notification import Notification

_COLUMNS = ("id", "task_id", "source_type", "message", "read", "created_at")


class NotificationRepository:
    def __init__(self, db: Database):
        self._db = db

    def create(self, notification: Notification) -> Notification:
        row = notification.to_row()
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO notifications ({', '.join(_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?)",
                tuple(row[c] for c in _COLUMNS),
            )
        return notification

    def get_unread(self) -> list[Notification]:
        rows = self._db.fetchall(
            "SELECT * FROM notifications WHERE read = 0 ORDER BY created_at DESC, id ASC"
        )
        return [Notification.from_row(r) for r in rows]

    def mark_read(self, notification_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET read = 1 WHERE id = ?", (notification_id,)
            )
        return cursor.rowcount > 0

    def mark_all_read(self) -> int:
        with self._db.transaction() as conn:
            cursor = conn.execute("UPDATE notifications SET read = 1 WHERE read = 0")
        return cursor.rowcount

    def count_unread(self) -> int:
        row = self._db.fetchone("SELECT COUNT(*) AS n FROM notifications WHERE read = 0")
        return int(row["n"]) if row else 0
