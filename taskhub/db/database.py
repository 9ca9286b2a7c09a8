"""Core database connection with ACID transaction support."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from taskhub.errors import StoreError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class Database:
    """
    SQLite database wrapper with explicit ACID transaction support.

    One connection is shared by every sync worker. All access goes through
    a re-entrant lock, so a ``transaction()`` block is never interleaved
    with statements issued from another thread.
    """

    def __init__(self, path: Optional[Path | str] = None):
        if path is None:
            from taskhub.config import get_settings
            path = get_settings().DATABASE_PATH
        self.path: Path | str = path if path == MEMORY else Path(path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # -- connection lifecycle --------------------------------------------------

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY

    def _ensure_dir(self) -> None:
        if not self.is_memory:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._ensure_dir()
                self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA foreign_keys = ON")
                self._conn.execute("PRAGMA journal_mode = WAL")
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def init(self) -> int:
        """Bring the schema up to date. Returns the resulting schema version."""
        from taskhub.db.migrations import run_migrations
        with self._lock:
            version = run_migrations(self.connection())
        logger.debug(f"Database {self.path} at schema version {version}")
        return version

    # -- transaction helpers ---------------------------------------------------

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """ACID transaction: commits on success, rolls back on exception."""
        with self._lock:
            conn = self.connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    # -- low-level query helpers -----------------------------------------------

    def fetchone(self, sql: str, params: tuple = ()) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self.connection().execute(sql, params).fetchone()
        return dict(row) if row else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.connection().execute(sql, params).fetchall()
        return [dict(r) for r in rows]


def open_database(path: Optional[Path | str] = None) -> Database:
    """Open and migrate a database; any failure is raised as StoreError."""
    db = Database(path)
    try:
        db.init()
    except StoreError:
        db.close()
        raise
    except (sqlite3.Error, OSError) as e:
        db.close()
        raise StoreError(f"Cannot open database at {db.path}: {e}") from e
    return db
