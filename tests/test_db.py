"""Unit tests for the DB layer: migrations, repositories and the Store façade.

Every test uses a fresh temporary SQLite file so tests are isolated and
leave nothing behind in the repo.
"""

from __future__ import annotations

import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from taskhub.db.database import Database, open_database
from taskhub.db.migrations import MIGRATIONS, current_version, run_migrations
from taskhub.db.store import Store, open_store
from taskhub.db.task_repo import TaskFilter
from taskhub.db.todo_repo import INBOX, DueWindow, TodoFilter
from taskhub.errors import StoreError
from taskhub.models.notification import Notification
from taskhub.models.source_config import SourceConfig
from taskhub.models.task import Priority, SourceType, Task, TaskStatus, clamp_priority
from taskhub.models.todo import ChecklistItem, LinkType, Project, Tag, Todo, TodoStatus
from taskhub.utils.timefmt import from_db_time, to_db_time


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _tmp_path(case: unittest.TestCase) -> Path:
    """A database path inside a directory removed after ``case`` finishes."""
    tmp = tempfile.TemporaryDirectory()
    case.addCleanup(tmp.cleanup)
    return Path(tmp.name) / "tasks.db"


def _make_store(case: unittest.TestCase) -> Store:
    return open_store(_tmp_path(case))


def _sample_task(n: int = 1, **overrides) -> Task:
    defaults = dict(
        id=f"jira-PROJ-{n}",
        source_type=SourceType.JIRA,
        source_item_id=f"PROJ-{n}",
        source_id="src-1",
        title=f"Task {n}",
        description="Fix the login form",
        status=TaskStatus.OPEN,
        priority=int(Priority.MEDIUM),
        updated_at=datetime(2024, 1, n, tzinfo=timezone.utc),
    )
    defaults.update(overrides)
    return Task(**defaults)


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ===========================================================================
# 1. Migrations
# ===========================================================================

class TestMigrations(unittest.TestCase):
    def setUp(self):
        self.path = _tmp_path(self)

    def test_fresh_database_reaches_latest_version(self):
        db = Database(self.path)
        self.assertEqual(db.init(), len(MIGRATIONS))
        names = {r["name"] for r in db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")}
        self.assertTrue({"schema_version", "sources", "tasks", "notifications"}.issubset(names))
        self.assertTrue({"projects", "todos", "tags", "todo_tags", "checklist_items", "links"}.issubset(names))
        db.close()

    def test_running_twice_is_noop(self):
        db = Database(self.path)
        db.init()
        db.init()
        rows = db.fetchall("SELECT version FROM schema_version ORDER BY version")
        self.assertEqual([r["version"] for r in rows], [v for v, _ in MIGRATIONS])
        db.close()

    def test_reopen_keeps_version(self):
        open_database(self.path).close()
        db = open_database(self.path)
        self.assertEqual(current_version(db.connection()), len(MIGRATIONS))
        db.close()

    def test_failed_migration_is_rolled_back(self):
        conn = sqlite3.connect(str(self.path))
        broken = [
            (1, "CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT);"),
            (2, "CREATE TABLE half_done (x INTEGER); INSERT INTO missing_table VALUES (1);"),
        ]
        with self.assertRaises(StoreError):
            run_migrations(conn, broken)
        self.assertEqual(current_version(conn), 1)
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='half_done'"
        ).fetchone()
        self.assertIsNone(row)
        conn.close()

    def test_out_of_order_versions_rejected(self):
        conn = sqlite3.connect(":memory:")
        with self.assertRaises(StoreError):
            run_migrations(conn, [(2, "SELECT 1;")])
        conn.close()

    def test_unwritable_path_raises_store_error(self):
        blocker = _tmp_path(self)
        blocker.write_bytes(b"")
        with self.assertRaises(StoreError):
            open_store(blocker / "nested" / "tasks.db")


# ===========================================================================
# 2. Task model
# ===========================================================================

class TestTaskModel(unittest.TestCase):
    def test_row_roundtrip_preserves_fields(self):
        task = _sample_task(cross_refs=["jira-PROJ-9"], raw_data='{"k": 1}')
        back = Task.from_row(task.to_row())
        self.assertEqual(back.id, task.id)
        self.assertEqual(back.status, TaskStatus.OPEN)
        self.assertEqual(back.cross_refs, ["jira-PROJ-9"])
        self.assertEqual(back.updated_at, task.updated_at)
        self.assertIsNone(back.created_at)

    def test_clamp_priority(self):
        self.assertEqual(clamp_priority(0), 1)
        self.assertEqual(clamp_priority(9), 5)
        self.assertEqual(clamp_priority("x"), 3)

    def test_db_time_sorts_lexically(self):
        early = to_db_time(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        late = to_db_time(datetime(2024, 1, 2, 3, 4, 5, 10, tzinfo=timezone.utc))
        self.assertLess(early, late)
        self.assertEqual(from_db_time(early), datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        self.assertEqual(to_db_time(None), "")

    def test_staleness(self):
        task = _sample_task(fetched_at=T0)
        self.assertTrue(task.is_stale(timedelta(minutes=5), now=T0 + timedelta(minutes=6)))
        self.assertFalse(task.is_stale(timedelta(minutes=5), now=T0 + timedelta(minutes=1)))


# ===========================================================================
# 3. Tasks through the Store
# ===========================================================================

class TestTaskStore(unittest.TestCase):
    def setUp(self):
        self.store = _make_store(self)

    def tearDown(self):
        self.store.close()

    def test_upsert_is_idempotent(self):
        tasks = [_sample_task(1), _sample_task(2)]
        self.store.upsert_tasks(tasks)
        self.store.upsert_tasks(tasks)
        self.assertEqual(self.store.count_tasks(), 2)

    def test_upsert_replaces_fields(self):
        self.store.upsert_tasks([_sample_task(1)])
        self.store.upsert_tasks([_sample_task(1, title="Renamed", status=TaskStatus.DONE)])
        got = self.store.get_task_by_id("jira-PROJ-1")
        self.assertEqual(got.title, "Renamed")
        self.assertEqual(got.status, TaskStatus.DONE)

    def test_empty_batch(self):
        self.assertEqual(self.store.upsert_tasks([]), 0)

    def test_get_missing_task(self):
        self.assertIsNone(self.store.get_task_by_id("nope"))

    def test_existing_ids(self):
        self.store.upsert_tasks([_sample_task(1), _sample_task(2)])
        ids = self.store.existing_task_ids(["jira-PROJ-1", "jira-PROJ-3"])
        self.assertEqual(ids, {"jira-PROJ-1"})

    def test_existing_ids_beyond_chunk_size(self):
        tasks = [_sample_task(1, id=f"t-{i}", source_item_id=str(i)) for i in range(1200)]
        self.store.upsert_tasks(tasks)
        ids = self.store.existing_task_ids([t.id for t in tasks] + ["t-missing"])
        self.assertEqual(len(ids), 1200)

    def test_filter_by_source_type_and_status(self):
        self.store.upsert_tasks([
            _sample_task(1),
            _sample_task(2, status=TaskStatus.DONE),
            _sample_task(3, id="bb-P-r-1", source_type=SourceType.BITBUCKET, source_item_id="P/r/1"),
        ])
        jira_open = self.store.get_tasks(TaskFilter(source_type=SourceType.JIRA, status=TaskStatus.OPEN))
        self.assertEqual([t.id for t in jira_open], ["jira-PROJ-1"])

    def test_query_matches_title_or_description(self):
        self.store.upsert_tasks([
            _sample_task(1, title="Deploy pipeline", description=""),
            _sample_task(2, title="Other", description="pipeline flaky"),
            _sample_task(3, title="Unrelated", description=""),
        ])
        got = self.store.get_tasks(TaskFilter(query="pipeline"))
        self.assertEqual({t.id for t in got}, {"jira-PROJ-1", "jira-PROJ-2"})

    def test_sort_and_pagination(self):
        self.store.upsert_tasks([_sample_task(n) for n in (1, 2, 3, 4)])
        page = self.store.get_tasks(TaskFilter(sort_by="updated_at", sort_desc=True, limit=2, offset=1))
        self.assertEqual([t.id for t in page], ["jira-PROJ-3", "jira-PROJ-2"])

    def test_unknown_sort_column_falls_back(self):
        self.store.upsert_tasks([_sample_task(1), _sample_task(2)])
        got = self.store.get_tasks(TaskFilter(sort_by="title; DROP TABLE tasks"))
        self.assertEqual([t.id for t in got], ["jira-PROJ-2", "jira-PROJ-1"])
        self.assertEqual(self.store.count_tasks(), 2)

    def test_count_by_source_type(self):
        self.store.upsert_tasks([
            _sample_task(1),
            _sample_task(2, id="email-x", source_type=SourceType.EMAIL, source_item_id="7"),
        ])
        self.assertEqual(self.store.count_tasks(SourceType.EMAIL), 1)

    def test_stale_tasks(self):
        self.store.upsert_tasks([
            _sample_task(1, fetched_at=T0 - timedelta(hours=2)),
            _sample_task(2, fetched_at=T0),
            _sample_task(3, fetched_at=T0 - timedelta(hours=3), source_id="src-2"),
        ])
        stale = self.store.get_stale_tasks(timedelta(hours=1), now=T0)
        self.assertEqual([t.id for t in stale], ["jira-PROJ-3", "jira-PROJ-1"])
        only = self.store.get_stale_tasks(timedelta(hours=1), source_id="src-1", now=T0)
        self.assertEqual([t.id for t in only], ["jira-PROJ-1"])

    def test_sqlite_failure_raises_store_error(self):
        self.store.db._conn = sqlite3.connect(":memory:")
        with self.assertRaises(StoreError):
            self.store.get_tasks()


# ===========================================================================
# 4. Sources and notifications
# ===========================================================================

class TestSourceStore(unittest.TestCase):
    def setUp(self):
        self.store = _make_store(self)

    def tearDown(self):
        self.store.close()

    def test_upsert_and_get(self):
        cfg = SourceConfig(type=SourceType.JIRA, name="Work", base_url="https://jira.example.com",
                           config={"jql": "assignee = currentUser()", "token": "keyring:jira-1"})
        self.store.upsert_source(cfg)
        got = self.store.get_source(cfg.id)
        self.assertEqual(got.name, "Work")
        self.assertEqual(got.config["jql"], "assignee = currentUser()")
        self.assertEqual(got.credential_ref(), "jira-1")

    def test_upsert_generates_id(self):
        cfg = SourceConfig(type=SourceType.EMAIL, name="Mail", id="")
        self.store.upsert_source(cfg)
        self.assertTrue(cfg.id)

    def test_created_at_survives_update(self):
        cfg = SourceConfig(type=SourceType.JIRA, name="Work", created_at=T0)
        self.store.upsert_source(cfg)
        cfg.name = "Work 2"
        cfg.created_at = T0 + timedelta(days=5)
        self.store.upsert_source(cfg)
        self.assertEqual(self.store.get_source(cfg.id).created_at, T0)

    def test_enabled_only(self):
        self.store.upsert_source(SourceConfig(type=SourceType.JIRA, name="a"))
        self.store.upsert_source(SourceConfig(type=SourceType.JIRA, name="b", enabled=False))
        self.assertEqual([s.name for s in self.store.get_sources(enabled_only=True)], ["a"])
        self.assertEqual(len(self.store.get_sources()), 2)

    def test_delete(self):
        cfg = self.store.upsert_source(SourceConfig(type=SourceType.JIRA, name="a"))
        self.assertTrue(self.store.delete_source(cfg.id))
        self.assertFalse(self.store.delete_source(cfg.id))

    def test_record_sync_result(self):
        cfg = self.store.upsert_source(SourceConfig(type=SourceType.JIRA, name="a"))
        self.store.record_sync_result(cfg.id, T0, "")
        self.store.record_sync_result(cfg.id, None, "boom")
        got = self.store.get_source(cfg.id)
        self.assertEqual(got.last_sync_at, T0)
        self.assertEqual(got.last_error, "boom")

    def test_poll_interval_default(self):
        cfg = SourceConfig(type=SourceType.JIRA, name="a", poll_interval_sec=0)
        self.assertEqual(cfg.effective_poll_interval(), 120)


class TestNotificationStore(unittest.TestCase):
    def setUp(self):
        self.store = _make_store(self)

    def tearDown(self):
        self.store.close()

    def _note(self, task_id: str, minutes: int) -> Notification:
        return self.store.create_notification(Notification(
            task_id=task_id,
            source_type=SourceType.JIRA,
            message=f"New jira item: {task_id}",
            created_at=T0 + timedelta(minutes=minutes),
        ))

    def test_unread_newest_first(self):
        self._note("a", 1)
        self._note("b", 2)
        self.assertEqual([n.task_id for n in self.store.get_unread_notifications()], ["b", "a"])

    def test_mark_read(self):
        note = self._note("a", 1)
        self.assertTrue(self.store.mark_notification_read(note.id))
        self.assertEqual(self.store.get_unread_notifications(), [])
        self.assertFalse(self.store.mark_notification_read("missing"))

    def test_mark_all_read(self):
        self._note("a", 1)
        self._note("b", 2)
        self.assertEqual(self.store.count_unread_notifications(), 2)
        self.assertEqual(self.store.mark_all_notifications_read(), 2)
        self.assertEqual(self.store.count_unread_notifications(), 0)


# ===========================================================================
# 5. Projects
# ===========================================================================

class WorkStoreTestCase(unittest.TestCase):
    def setUp(self):
        self.store = _make_store(self)

    def tearDown(self):
        self.store.close()

    def _count(self, table: str) -> int:
        return self.store.db.fetchone(f"SELECT COUNT(*) AS n FROM {table}")["n"]


class TestProjectStore(WorkStoreTestCase):
    def test_create_assigns_increasing_sort_order(self):
        a = self.store.create_project(Project(name="Alpha"))
        b = self.store.create_project(Project(name="Beta"))
        self.assertLess(a.sort_order, b.sort_order)
        self.assertEqual([p.name for p in self.store.get_projects()], ["Alpha", "Beta"])
        self.assertEqual(self.store.get_project(a.id).name, "Alpha")

    def test_archive_and_restore(self):
        project = self.store.create_project(Project(name="Launch"))
        self.assertTrue(self.store.archive_project(project.id))
        self.assertEqual(self.store.get_projects(), [])
        self.assertTrue(self.store.get_projects(include_archived=True)[0].archived)
        self.assertTrue(self.store.restore_project(project.id))
        self.assertFalse(self.store.get_project(project.id).archived)
        self.assertFalse(self.store.archive_project("missing"))

    def test_update(self):
        project = self.store.create_project(Project(name="Launch"))
        project.description = "Q4 launch"
        project.color = "#ff0000"
        self.assertTrue(self.store.update_project(project))
        loaded = self.store.get_project(project.id)
        self.assertEqual(loaded.description, "Q4 launch")
        self.assertEqual(loaded.color, "#ff0000")
        self.assertFalse(self.store.update_project(Project(name="Ghost")))

    def test_empty_name_rejected(self):
        with self.assertRaises(ValueError):
            self.store.create_project(Project(name="  "))

    def test_duplicate_name_is_store_error(self):
        self.store.create_project(Project(name="Launch"))
        with self.assertRaises(StoreError):
            self.store.create_project(Project(name="Launch"))

    def test_delete_moves_todos_to_inbox(self):
        project = self.store.create_project(Project(name="Launch"))
        todo = self.store.create_todo(Todo(title="Write notes", project_id=project.id))
        self.assertTrue(self.store.delete_project(project.id))
        self.assertIsNone(self.store.get_todo(todo.id).project_id)
        inbox = self.store.get_todos(TodoFilter(project_id=INBOX))
        self.assertEqual([t.id for t in inbox], [todo.id])
        self.assertFalse(self.store.delete_project(project.id))


# ===========================================================================
# 6. To-dos and checklist items
# ===========================================================================

class TestTodoStore(WorkStoreTestCase):
    def test_create_and_get(self):
        todo = self.store.create_todo(Todo(
            title="Review PR", description="api#7", priority=2,
            due_date=datetime(2024, 3, 4, tzinfo=timezone.utc),
        ))
        loaded = self.store.get_todo(todo.id)
        self.assertEqual(loaded.title, "Review PR")
        self.assertEqual(loaded.priority, 2)
        self.assertEqual(loaded.due_date, datetime(2024, 3, 4, tzinfo=timezone.utc))
        self.assertEqual(loaded.status, TodoStatus.OPEN)
        self.assertIsNone(loaded.completed_at)
        self.assertIsNone(loaded.project_id)
        self.assertIsNone(self.store.get_todo("missing"))

    def test_out_of_range_priority_becomes_medium(self):
        todo = self.store.create_todo(Todo(title="x", priority=9))
        self.assertEqual(self.store.get_todo(todo.id).priority, int(Priority.MEDIUM))

    def test_empty_title_rejected(self):
        with self.assertRaises(ValueError):
            self.store.create_todo(Todo(title=""))
        self.assertEqual(self.store.count_todos(), 0)

    def test_completed_at_follows_status(self):
        todo = self.store.create_todo(Todo(title="Ship it"))
        todo.status = TodoStatus.COMPLETE
        self.assertTrue(self.store.update_todo(todo))
        done = self.store.get_todo(todo.id)
        self.assertTrue(done.is_complete)
        self.assertIsNotNone(done.completed_at)

        done.status = TodoStatus.OPEN
        self.store.update_todo(done)
        self.assertIsNone(self.store.get_todo(todo.id).completed_at)

        created_done = self.store.create_todo(Todo(title="Already", status=TodoStatus.COMPLETE))
        self.assertIsNotNone(self.store.get_todo(created_done.id).completed_at)

    def test_update_missing_returns_false(self):
        self.assertFalse(self.store.update_todo(Todo(title="Ghost")))
        self.assertFalse(self.store.delete_todo("missing"))

    def test_delete_cascades(self):
        todo = self.store.create_todo(Todo(title="Parent"))
        tag = self.store.create_tag(Tag(name="work"))
        self.store.add_checklist_item(ChecklistItem(todo_id=todo.id, text="step"))
        self.store.set_todo_tags(todo.id, [tag.id])
        self.store.create_link(todo.id, "jira-PROJ-1")

        self.assertTrue(self.store.delete_todo(todo.id))
        self.assertEqual(self._count("checklist_items"), 0)
        self.assertEqual(self._count("todo_tags"), 0)
        self.assertEqual(self._count("links"), 0)
        self.assertEqual(self._count("tags"), 1)

    def test_filters(self):
        project = self.store.create_project(Project(name="Launch"))
        a = self.store.create_todo(Todo(title="Draft release notes", project_id=project.id, priority=1))
        b = self.store.create_todo(Todo(title="Book venue", description="notes in wiki"))
        c = self.store.create_todo(Todo(title="Buy snacks", status=TodoStatus.COMPLETE))

        def ids(flt):
            return [t.id for t in self.store.get_todos(flt)]

        self.assertEqual(ids(TodoFilter(status=TodoStatus.COMPLETE)), [c.id])
        self.assertEqual(ids(TodoFilter(project_id=project.id)), [a.id])
        self.assertEqual(ids(TodoFilter(project_id=INBOX)), [b.id, c.id])
        self.assertEqual(ids(TodoFilter(priority=1)), [a.id])
        self.assertEqual(ids(TodoFilter(query="notes")), [a.id, b.id])
        self.assertEqual(self.store.count_todos(TodoFilter(query="notes")), 2)

    def test_tag_filter_returns_each_todo_once(self):
        work = self.store.create_tag(Tag(name="work"))
        urgent = self.store.create_tag(Tag(name="urgent"))
        a = self.store.create_todo(Todo(title="a"))
        b = self.store.create_todo(Todo(title="b"))
        self.store.create_todo(Todo(title="c"))
        self.store.set_todo_tags(a.id, [work.id, urgent.id])
        self.store.set_todo_tags(b.id, [urgent.id])

        found = self.store.get_todos(TodoFilter(tag_ids=[work.id, urgent.id]))
        self.assertEqual([t.id for t in found], [a.id, b.id])
        self.assertEqual(self.store.count_todos(TodoFilter(tag_ids=[work.id, urgent.id])), 2)
        self.assertEqual([t.name for t in found[0].tags], ["urgent", "work"])

    def test_due_windows(self):
        def due(title, when, **kw):
            return self.store.create_todo(Todo(title=title, due_date=when, **kw)).id

        overdue = due("late", datetime(2024, 2, 28, tzinfo=timezone.utc))
        due("late but done", datetime(2024, 2, 27, tzinfo=timezone.utc), status=TodoStatus.COMPLETE)
        today = due("today", datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc))
        soon = due("soon", datetime(2024, 3, 5, tzinfo=timezone.utc))
        due("later", datetime(2024, 3, 20, tzinfo=timezone.utc))
        self.store.create_todo(Todo(title="someday"))

        def ids(window):
            return [t.id for t in self.store.get_todos(TodoFilter(due=window), now=T0)]

        self.assertEqual(ids(DueWindow.TODAY), [today])
        self.assertEqual(ids(DueWindow.UPCOMING), [today, soon])
        self.assertEqual(ids(DueWindow.OVERDUE), [overdue])
        self.assertEqual(self.store.count_todos(TodoFilter(due=DueWindow.OVERDUE), now=T0), 1)

    def test_sort_allow_list_and_paging(self):
        low = self.store.create_todo(Todo(title="low", priority=5))
        high = self.store.create_todo(Todo(title="high", priority=1))
        mid = self.store.create_todo(Todo(title="mid", priority=3))

        by_priority = self.store.get_todos(TodoFilter(sort_by="priority"))
        self.assertEqual([t.id for t in by_priority], [high.id, mid.id, low.id])

        hostile = self.store.get_todos(TodoFilter(sort_by="priority; DROP TABLE todos"))
        self.assertEqual([t.id for t in hostile], [low.id, high.id, mid.id])
        self.assertEqual(self.store.count_todos(), 3)

        page = self.store.get_todos(TodoFilter(sort_desc=True, limit=1, offset=1))
        self.assertEqual([t.id for t in page], [high.id])

    def test_reorder(self):
        first = self.store.create_todo(Todo(title="first"))
        second = self.store.create_todo(Todo(title="second"))
        self.assertTrue(self.store.reorder_todo(first.id, 99))
        self.assertEqual([t.id for t in self.store.get_todos()], [second.id, first.id])
        self.assertFalse(self.store.reorder_todo("missing", 1))


class TestChecklistStore(WorkStoreTestCase):
    def setUp(self):
        super().setUp()
        self.todo = self.store.create_todo(Todo(title="Release"))

    def test_items_in_order_with_counts(self):
        one = self.store.add_checklist_item(ChecklistItem(todo_id=self.todo.id, text="tag"))
        two = self.store.add_checklist_item(ChecklistItem(todo_id=self.todo.id, text="build"))
        self.assertEqual([i.id for i in self.store.get_checklist_items(self.todo.id)], [one.id, two.id])

        self.assertTrue(self.store.toggle_checklist_item(one.id))
        loaded = self.store.get_todo(self.todo.id)
        self.assertEqual((loaded.checklist_done_count, loaded.checklist_count), (1, 2))
        listed = self.store.get_todos()[0]
        self.assertEqual((listed.checklist_done_count, listed.checklist_count), (1, 2))

        self.assertTrue(self.store.toggle_checklist_item(one.id))
        self.assertFalse(self.store.get_checklist_items(self.todo.id)[0].checked)
        self.assertFalse(self.store.toggle_checklist_item("missing"))

    def test_update_delete_reorder(self):
        one = self.store.add_checklist_item(ChecklistItem(todo_id=self.todo.id, text="tag"))
        two = self.store.add_checklist_item(ChecklistItem(todo_id=self.todo.id, text="build"))
        one.text = "tag v1.2"
        one.checked = True
        self.assertTrue(self.store.update_checklist_item(one))
        self.assertTrue(self.store.reorder_checklist_item(one.id, 10))
        items = self.store.get_checklist_items(self.todo.id)
        self.assertEqual([i.text for i in items], ["build", "tag v1.2"])
        self.assertTrue(items[1].checked)

        self.assertTrue(self.store.delete_checklist_item(two.id))
        self.assertFalse(self.store.delete_checklist_item(two.id))
        self.assertEqual(len(self.store.get_checklist_items(self.todo.id)), 1)

    def test_empty_text_rejected(self):
        with self.assertRaises(ValueError):
            self.store.add_checklist_item(ChecklistItem(todo_id=self.todo.id, text=" "))

    def test_unknown_todo_is_store_error(self):
        with self.assertRaises(StoreError):
            self.store.add_checklist_item(ChecklistItem(todo_id="missing", text="x"))


# ===========================================================================
# 7. Tags
# ===========================================================================

class TestTagStore(WorkStoreTestCase):
    def test_list_sorted_by_name(self):
        self.store.create_tag(Tag(name="work"))
        self.store.create_tag(Tag(name="home", color="#00ff00"))
        tags = self.store.get_tags()
        self.assertEqual([t.name for t in tags], ["home", "work"])
        self.assertEqual(tags[0].color, "#00ff00")

    def test_set_todo_tags_replaces_and_dedupes(self):
        work = self.store.create_tag(Tag(name="work"))
        home = self.store.create_tag(Tag(name="home"))
        todo = self.store.create_todo(Todo(title="t"))
        self.store.set_todo_tags(todo.id, [work.id, work.id])
        self.assertEqual([t.name for t in self.store.get_tags_for_todo(todo.id)], ["work"])
        self.store.set_todo_tags(todo.id, [home.id])
        self.assertEqual([t.name for t in self.store.get_todo(todo.id).tags], ["home"])
        self.store.set_todo_tags(todo.id, [])
        self.assertEqual(self.store.get_tags_for_todo(todo.id), [])

    def test_update_and_delete(self):
        tag = self.store.create_tag(Tag(name="wrk"))
        todo = self.store.create_todo(Todo(title="t"))
        self.store.set_todo_tags(todo.id, [tag.id])
        tag.name = "work"
        self.assertTrue(self.store.update_tag(tag))
        self.assertEqual(self.store.get_tags()[0].name, "work")

        self.assertTrue(self.store.delete_tag(tag.id))
        self.assertEqual(self.store.get_tags_for_todo(todo.id), [])
        self.assertFalse(self.store.delete_tag(tag.id))

    def test_duplicate_and_empty_names(self):
        self.store.create_tag(Tag(name="work"))
        with self.assertRaises(StoreError):
            self.store.create_tag(Tag(name="work"))
        with self.assertRaises(ValueError):
            self.store.create_tag(Tag(name=""))


# ===========================================================================
# 8. Links between to-dos and cached tasks
# ===========================================================================

class TestLinkStore(WorkStoreTestCase):
    def setUp(self):
        super().setUp()
        self.store.upsert_tasks([_sample_task(1, title="Fix login")])
        self.todo = self.store.create_todo(Todo(title="Follow up on login"))

    def test_links_resolve_titles_both_ways(self):
        link = self.store.create_link(self.todo.id, "jira-PROJ-1")
        self.assertEqual(link.link_type, LinkType.MANUAL)

        from_todo = self.store.get_links_for_todo(self.todo.id)
        self.assertEqual(len(from_todo), 1)
        self.assertEqual(from_todo[0].task_id, "jira-PROJ-1")
        self.assertEqual(from_todo[0].task_title, "Fix login")

        from_task = self.store.get_links_for_task("jira-PROJ-1")
        self.assertEqual([link.todo_title for link in from_task], ["Follow up on login"])

    def test_link_to_uncached_task(self):
        self.store.create_link(self.todo.id, "bitbucket-PROJ/api/9", LinkType.AUTO)
        link = self.store.get_links_for_todo(self.todo.id)[0]
        self.assertEqual(link.task_title, "")
        self.assertEqual(link.link_type, LinkType.AUTO)

    def test_duplicate_link_is_store_error(self):
        self.store.create_link(self.todo.id, "jira-PROJ-1")
        with self.assertRaises(StoreError):
            self.store.create_link(self.todo.id, "jira-PROJ-1")
        self.assertEqual(len(self.store.get_links_for_todo(self.todo.id)), 1)

    def test_link_to_unknown_todo_is_store_error(self):
        with self.assertRaises(StoreError):
            self.store.create_link("missing", "jira-PROJ-1")

    def test_delete_link(self):
        link = self.store.create_link(self.todo.id, "jira-PROJ-1")
        self.assertTrue(self.store.delete_link(link.id))
        self.assertEqual(self.store.get_links_for_task("jira-PROJ-1"), [])
        self.assertFalse(self.store.delete_link(link.id))

    def test_task_refresh_keeps_links(self):
        self.store.create_link(self.todo.id, "jira-PROJ-1")
        self.store.upsert_tasks([_sample_task(1, title="Fix login form")])
        self.assertEqual(self.store.get_links_for_todo(self.todo.id)[0].task_title, "Fix login form")


if __name__ == "__main__":
    unittest.main()
