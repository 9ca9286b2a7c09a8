"""Repository for the ``sources`` table."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from taskhub.db.database import Database
from taskhub.models.source_config import SourceConfig
from taskhub.utils.timefmt import to_db_time, utcnow

_COLUMNS = (
    "id", "type", "name", "base_url", "enabled", "poll_interval_sec",
    "last_sync_at", "last_error", "config", "created_at", "updated_at",
)


class SourceRepository:
    def __init__(self, db: Database):
        self._db = db

    def upsert(self, cfg: SourceConfig) -> SourceConfig:
        if not cfg.id:
            cfg.id = str(uuid.uuid4())
        cfg.updated_at = utcnow()
        row = cfg.to_row()
        # created_at survives replacement of an existing row
        existing = self._db.fetchone("SELECT created_at FROM sources WHERE id = ?", (cfg.id,))
        if existing and existing["created_at"]:
            row["created_at"] = existing["created_at"]

        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO sources ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(row[c] for c in _COLUMNS),
            )
        return cfg

    def get_by_id(self, source_id: str) -> Optional[SourceConfig]:
        row = self._db.fetchone("SELECT * FROM sources WHERE id = ?", (source_id,))
        return SourceConfig.from_row(row) if row else None

    def list_all(self, enabled_only: bool = False) -> list[SourceConfig]:
        if enabled_only:
            rows = self._db.fetchall("SELECT * FROM sources WHERE enabled = 1 ORDER BY name")
        else:
            rows = self._db.fetchall("SELECT * FROM sources ORDER BY name")
        return [SourceConfig.from_row(r) for r in rows]

    def delete(self, source_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cursor.rowcount > 0

    def record_sync(self, source_id: str, last_sync_at: Optional[datetime], last_error: str) -> bool:
        """Persist the outcome of the latest cycle; a None sync time keeps the old one."""
        with self._db.transaction() as conn:
            if last_sync_at is None:
                cursor = conn.execute(
                    "UPDATE sources SET last_error = ?, updated_at = ? WHERE id = ?",
                    (last_error, to_db_time(utcnow()), source_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE sources SET last_sync_at = ?, last_error = ?, updated_at = ? WHERE id = ?",
                    (to_db_time(last_sync_at), last_error, to_db_time(utcnow()), source_id),
                )
        return cursor.rowcount > 0
