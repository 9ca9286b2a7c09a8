"""Database layer: SQLite with forward-only migrations and repository pattern."""

from taskhub.db.database import Database, open_database
from taskhub.db.migrations import MIGRATIONS, run_migrations, current_version
from taskhub.db.store import Store, open_store
from taskhub.db.task_repo import TaskFilter, SORT_COLUMNS
from taskhub.db.todo_repo import TodoFilter, DueWindow, INBOX, TODO_SORT_COLUMNS

__all__ = [
    "Database", "open_database",
    "MIGRATIONS", "run_migrations", "current_version",
    "Store", "open_store",
    "TaskFilter", "SORT_COLUMNS",
    "TodoFilter", "DueWindow", "INBOX", "TODO_SORT_COLUMNS",
]
