"""Ordered, forward-only schema migrations.

Each entry is ``(version, sql)``; versions run strictly from 1 upward.
A migration is applied as one statement batch together with its
``schema_version`` row, so a failed migration leaves nothing behind.
"""

from __future__ import annotations

import logging
import sqlite3

from taskhub.errors import StoreError

logger = logging.getLogger(__name__)


_V1_INITIAL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER PRIMARY KEY,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS sources (
    id                TEXT PRIMARY KEY,
    type              TEXT NOT NULL,
    name              TEXT NOT NULL,
    base_url          TEXT NOT NULL DEFAULT '',
    enabled           INTEGER NOT NULL DEFAULT 1,
    poll_interval_sec INTEGER NOT NULL DEFAULT 120,
    config            TEXT NOT NULL DEFAULT '{}',
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    source_type     TEXT NOT NULL,
    source_item_id  TEXT NOT NULL,
    source_id       TEXT NOT NULL,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    status          TEXT NOT NULL DEFAULT 'open',
    priority        INTEGER NOT NULL DEFAULT 3,
    assignee        TEXT NOT NULL DEFAULT '',
    author          TEXT NOT NULL DEFAULT '',
    source_url      TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL DEFAULT '',
    updated_at      TEXT NOT NULL DEFAULT '',
    fetched_at      TEXT NOT NULL,
    raw_data        TEXT NOT NULL DEFAULT '',
    cross_refs      TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS notifications (
    id           TEXT PRIMARY KEY,
    task_id      TEXT NOT NULL,
    source_type  TEXT NOT NULL,
    message      TEXT NOT NULL,
    read         INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_source_id ON tasks(source_id);
CREATE INDEX IF NOT EXISTS idx_tasks_source_type ON tasks(source_type);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
CREATE INDEX IF NOT EXISTS idx_tasks_updated_at ON tasks(updated_at);
CREATE INDEX IF NOT EXISTS idx_notifications_read ON notifications(read);
CREATE INDEX IF NOT EXISTS idx_notifications_created ON notifications(created_at);
"""

_V2_COMPOSITE_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_tasks_source_type_updated ON tasks(source_type, updated_at);
CREATE INDEX IF NOT EXISTS idx_notifications_task_id ON notifications(task_id);
"""

_V3_SOURCE_SYNC_STATE = """
ALTER TABLE sources ADD COLUMN last_sync_at TEXT NOT NULL DEFAULT '';
ALTER TABLE sources ADD COLUMN last_error TEXT NOT NULL DEFAULT '';
CREATE INDEX IF NOT EXISTS idx_tasks_fetched_at ON tasks(fetched_at);
"""

_V4_LOCAL_WORK = """
CREATE TABLE IF NOT EXISTS projects (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    color       TEXT NOT NULL DEFAULT '',
    icon        TEXT NOT NULL DEFAULT '',
    archived    INTEGER NOT NULL DEFAULT 0 CHECK(archived IN (0, 1)),
    sort_order  INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS todos (
    id           TEXT PRIMARY KEY,
    title        TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    status       TEXT NOT NULL DEFAULT 'open' CHECK(status IN ('open', 'complete')),
    priority     INTEGER NOT NULL DEFAULT 3 CHECK(priority BETWEEN 1 AND 5),
    due_date     TEXT,
    sort_order   INTEGER NOT NULL DEFAULT 0,
    project_id   TEXT REFERENCES projects(id) ON DELETE SET NULL,
    created_at   TEXT NOT NULL,
    completed_at TEXT,
    updated_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_todos_status ON todos(status);
CREATE INDEX IF NOT EXISTS idx_todos_priority ON todos(priority);
CREATE INDEX IF NOT EXISTS idx_todos_due_date ON todos(due_date);
CREATE INDEX IF NOT EXISTS idx_todos_project_id ON todos(project_id);
CREATE INDEX IF NOT EXISTS idx_todos_sort_order ON todos(sort_order);
CREATE INDEX IF NOT EXISTS idx_todos_updated_at ON todos(updated_at);

CREATE TABLE IF NOT EXISTS tags (
    id         TEXT PRIMARY KEY,
    name       TEXT NOT NULL UNIQUE,
    color      TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS todo_tags (
    todo_id TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
    tag_id  TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (todo_id, tag_id)
);

CREATE TABLE IF NOT EXISTS checklist_items (
    id         TEXT PRIMARY KEY,
    todo_id    TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
    text       TEXT NOT NULL,
    checked    INTEGER NOT NULL DEFAULT 0 CHECK(checked IN (0, 1)),
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_checklist_items_todo_id ON checklist_items(todo_id);

CREATE TABLE IF NOT EXISTS links (
    id         TEXT PRIMARY KEY,
    todo_id    TEXT NOT NULL REFERENCES todos(id) ON DELETE CASCADE,
    task_id    TEXT NOT NULL,
    link_type  TEXT NOT NULL DEFAULT 'manual' CHECK(link_type IN ('manual', 'auto')),
    created_at TEXT NOT NULL,
    UNIQUE(todo_id, task_id)
);

CREATE INDEX IF NOT EXISTS idx_links_todo_id ON links(todo_id);
CREATE INDEX IF NOT EXISTS idx_links_task_id ON links(task_id);
"""

MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_INITIAL),
    (2, _V2_COMPOSITE_INDEXES),
    (3, _V3_SOURCE_SYNC_STATE),
    (4, _V4_LOCAL_WORK),
]


def validate_migrations(migrations: list[tuple[int, str]]) -> None:
    for expected, (version, _) in enumerate(migrations, start=1):
        if version != expected:
            raise StoreError(
                f"Migration versions must be sequential from 1: expected {expected}, got {version}"
            )


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied version; 0 when ``schema_version`` does not exist yet."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if row is None:
        return 0
    row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()
    return int(row[0])


def run_migrations(
    conn: sqlite3.Connection,
    migrations: list[tuple[int, str]] = MIGRATIONS,
) -> int:
    """Apply every pending migration in order and return the final version.

    Running twice against the same database is a no-op.
    """
    validate_migrations(migrations)
    try:
        version = current_version(conn)
    except sqlite3.Error as e:
        raise StoreError(f"Cannot read schema version: {e}") from e

    for target, sql in migrations:
        if target <= version:
            continue
        script = (
            "BEGIN;\n"
            f"{sql}\n"
            f"INSERT INTO schema_version (version) VALUES ({int(target)});\n"
            "COMMIT;"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Migration {target} failed: {e}") from e
        logger.info(f"Applied schema migration {target}")
        version = target

    return version
