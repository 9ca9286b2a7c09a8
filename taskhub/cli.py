"""
TaskHub command line.

Usage:
    taskhub init --seed-sources sources.yaml
    taskhub sources list
    taskhub sources add --type jira --name Work --base-url https://jira.example.com
    taskhub sync
    taskhub watch
    taskhub tasks --source-type jira --status open --limit 20
    taskhub notifications --all
    taskhub todos add "Review PR" --priority 2 --due 2026-11-01
    taskhub todos link <todo-id> jira-PROJ-1
    taskhub projects add Launch
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from taskhub.config import get_settings, load_sources_file
from taskhub.credentials import CredentialVault, DotenvVault
from taskhub.db.store import Store, open_store
from taskhub.db.task_repo import DEFAULT_SORT, SORT_COLUMNS, TaskFilter
from taskhub.db.todo_repo import DEFAULT_TODO_SORT, INBOX, TODO_SORT_COLUMNS, DueWindow, TodoFilter
from taskhub.errors import ConfigError, CredentialError, SourceError, StoreError
from taskhub.logging_setup import setup_logging
from taskhub.models.source_config import CREDENTIAL_PREFIX, SourceConfig
from taskhub.models.task import SourceType, Task, TaskStatus
from taskhub.models.todo import ChecklistItem, Project, Tag, Todo, TodoStatus
from taskhub.sources.registry import SECRET_KEYS, build_adapter, register_sources
from taskhub.sync.events import AuthErrorEvent, SyncErrorEvent, SyncEvent, SyncResultEvent
from taskhub.sync.poller import Poller
from taskhub.utils.redact import redact_error
from taskhub.utils.timefmt import utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _store_secret(cfg: SourceConfig, vault: CredentialVault, secret: str) -> None:
    """Put ``secret`` in the vault and leave only a reference in ``cfg.config``."""
    key = SECRET_KEYS[SourceType(cfg.type)]
    vault.set(cfg.default_credential_key, secret)
    cfg.config[key] = CREDENTIAL_PREFIX + cfg.default_credential_key


def _parse_pairs(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"expected KEY=VALUE, got {pair!r}")
        out[key.strip()] = value.strip()
    return out


def _format_task(task: Task) -> str:
    assignee = f" @{task.assignee}" if task.assignee else ""
    return (
        f"{task.id:<28} {task.status.value:<12} P{task.priority}  "
        f"{task.title[:60]}{assignee}"
    )


def _print_event(event: SyncEvent) -> None:
    if isinstance(event, SyncResultEvent):
        print(f"[{event.source_type.value}] {len(event.tasks)} item(s), {event.new_task_count} new")
    elif isinstance(event, AuthErrorEvent):
        print(f"[{event.source_type.value}] {event.message}")
    elif isinstance(event, SyncErrorEvent):
        print(f"[{event.source_type.value}] sync failed: {event.error}")


def _record_event(store: Store, event: SyncEvent) -> None:
    """Persist the outcome of a cycle on the source row."""
    if not event.source_id:
        return
    try:
        if isinstance(event, SyncResultEvent):
            store.record_sync_result(event.source_id, utcnow(), "")
        elif isinstance(event, SyncErrorEvent):
            store.record_sync_result(event.source_id, None, event.error)
        elif isinstance(event, AuthErrorEvent):
            store.record_sync_result(event.source_id, None, event.message)
    except StoreError as e:
        logger.warning(f"Could not record sync result for {event.source_id}: {e}")


def _build_poller(store: Store, vault: CredentialVault) -> Optional[Poller]:
    poller = Poller(store)
    if register_sources(poller, store, vault) == 0:
        print("No enabled sources could be registered. Add one with 'taskhub sources add'.")
        return None
    return poller


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init(args, store: Store, vault: CredentialVault) -> int:
    print(f"Database initialized at: {store.path}")
    if not args.seed_sources:
        return 0
    try:
        configs = load_sources_file(Path(args.seed_sources))
    except ConfigError as e:
        print(f"Cannot seed sources: {e}", file=sys.stderr)
        return 1
    for cfg in configs:
        key = SECRET_KEYS[SourceType(cfg.type)]
        plain = cfg.config.get(key, "")
        if plain and not plain.startswith(CREDENTIAL_PREFIX):
            _store_secret(cfg, vault, plain)
        store.upsert_source(cfg)
        print(f"  Registered {cfg.type.value} source: {cfg.name} ({cfg.id})")
    return 0


def cmd_sources_list(args, store: Store, vault: CredentialVault) -> int:
    sources = store.get_sources()
    if not sources:
        print("No sources configured.")
        return 0
    for cfg in sources:
        state = "enabled" if cfg.enabled else "disabled"
        last = cfg.last_sync_at.isoformat() if cfg.last_sync_at else "never"
        print(f"{cfg.id}  {cfg.type.value:<10} {cfg.name:<24} {state:<9} last sync: {last}")
        if cfg.last_error:
            print(f"    last error: {cfg.last_error}")
    return 0


def cmd_sources_add(args, store: Store, vault: CredentialVault) -> int:
    try:
        config = _parse_pairs(args.config or [])
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2
    cfg = SourceConfig(
        type=SourceType(args.type),
        name=args.name,
        base_url=args.base_url or "",
        enabled=not args.disabled,
        poll_interval_sec=args.interval,
        config=config,
    )
    cfg.poll_interval_sec = cfg.effective_poll_interval()

    if args.secret_env:
        secret = os.environ.get(args.secret_env, "")
    else:
        secret = getpass.getpass(f"{SECRET_KEYS[cfg.type]} for {cfg.name}: ")
    if not secret:
        print("A credential is required.", file=sys.stderr)
        return 2
    _store_secret(cfg, vault, secret)

    store.upsert_source(cfg)
    print(f"Added {cfg.type.value} source {cfg.name} ({cfg.id})")
    return 0


def cmd_sources_remove(args, store: Store, vault: CredentialVault) -> int:
    cfg = store.get_source(args.id)
    if cfg is None:
        print(f"No source with id {args.id}", file=sys.stderr)
        return 1
    store.delete_source(cfg.id)
    ref = cfg.credential_ref(SECRET_KEYS[SourceType(cfg.type)])
    if ref:
        try:
            vault.delete(ref)
        except CredentialError as e:
            logger.info(f"No credential removed for {cfg.id}: {e}")
    print(f"Removed source {cfg.name} ({cfg.id})")
    return 0


def cmd_sources_test(args, store: Store, vault: CredentialVault) -> int:
    cfg = store.get_source(args.id)
    if cfg is None:
        print(f"No source with id {args.id}", file=sys.stderr)
        return 1
    adapter = build_adapter(cfg, vault)
    if adapter is None:
        print(f"Source {cfg.name} cannot be built; check its config and credential.", file=sys.stderr)
        return 1
    try:
        identity = adapter.validate_connection()
    except SourceError as e:
        print(f"Connection failed: {redact_error(e)}", file=sys.stderr)
        return 1
    print(f"Connected to {cfg.name} as {identity}")
    return 0


def cmd_sync(args, store: Store, vault: CredentialVault) -> int:
    poller = _build_poller(store, vault)
    if poller is None:
        return 1
    ids = [s.source_id for s in poller.get_statuses()]
    if args.source:
        if args.source not in ids:
            print(f"Source {args.source} is not registered (disabled or unbuildable?)", file=sys.stderr)
            return 1
        ids = [args.source]

    failures = 0
    for source_id in ids:
        poller.sync_now(source_id)
        event = poller.next_event(timeout=0)
        if event is None:
            continue
        _record_event(store, event)
        _print_event(event)
        if not isinstance(event, SyncResultEvent):
            failures += 1
    return 1 if failures else 0


def cmd_watch(args, store: Store, vault: CredentialVault) -> int:
    poller = _build_poller(store, vault)
    if poller is None:
        return 1
    poller.start()
    print("Watching sources. Press Ctrl-C to stop.")
    try:
        for event in poller.events():
            _record_event(store, event)
            _print_event(event)
    except KeyboardInterrupt:
        print()
    finally:
        poller.stop()
    return 0


def cmd_tasks(args, store: Store, vault: CredentialVault) -> int:
    if args.stale_minutes is not None:
        tasks = store.get_stale_tasks(timedelta(minutes=args.stale_minutes), source_id=args.source)
    else:
        tasks = store.get_tasks(TaskFilter(
            source_type=SourceType(args.source_type) if args.source_type else None,
            source_id=args.source,
            status=TaskStatus(args.status) if args.status else None,
            query=args.query or "",
            sort_by=args.sort,
            sort_desc=not args.asc,
            limit=args.limit,
            offset=args.offset,
        ))
    if not tasks:
        print("No tasks.")
        return 0
    for task in tasks:
        print(_format_task(task))
    return 0


def cmd_notifications(args, store: Store, vault: CredentialVault) -> int:
    if args.all:
        print(f"Marked {store.mark_all_notifications_read()} notification(s) read")
        return 0
    if args.mark_read:
        if not store.mark_notification_read(args.mark_read):
            print(f"No notification with id {args.mark_read}", file=sys.stderr)
            return 1
        print("Marked read")
        return 0
    unread = store.count_unread_notifications()
    if not unread:
        print("No unread notifications.")
        return 0
    print(f"{unread} unread notification(s)")
    for n in store.get_unread_notifications():
        print(f"{n.id}  {n.created_at:%Y-%m-%d %H:%M}  {n.message}")
    return 0


# ---------------------------------------------------------------------------
# Local work: to-dos, projects, tags
# ---------------------------------------------------------------------------

def _due_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def _format_todo(todo: Todo) -> str:
    mark = "x" if todo.is_complete else " "
    due = f" due {todo.due_date:%Y-%m-%d}" if todo.due_date else ""
    checklist = f" [{todo.checklist_done_count}/{todo.checklist_count}]" if todo.checklist_count else ""
    tags = "".join(f" #{t.name}" for t in todo.tags)
    return f"[{mark}] {todo.id}  P{todo.priority}  {todo.title[:60]}{checklist}{due}{tags}"


def _get_todo_or_fail(store: Store, todo_id: str) -> Optional[Todo]:
    todo = store.get_todo(todo_id)
    if todo is None:
        print(f"No todo with id {todo_id}", file=sys.stderr)
    return todo


def cmd_todos_add(args, store: Store, vault: CredentialVault) -> int:
    if args.project and store.get_project(args.project) is None:
        print(f"No project with id {args.project}", file=sys.stderr)
        return 1
    todo = store.create_todo(Todo(
        title=args.title,
        description=args.description or "",
        priority=args.priority,
        due_date=args.due,
        project_id=args.project,
    ))
    print(f"Added todo {todo.title} ({todo.id})")
    return 0


def cmd_todos_list(args, store: Store, vault: CredentialVault) -> int:
    todos = store.get_todos(TodoFilter(
        status=TodoStatus(args.status) if args.status else None,
        project_id=args.project,
        tag_ids=args.tag or [],
        query=args.query or "",
        due=DueWindow(args.due) if args.due else None,
        sort_by=args.sort,
        sort_desc=args.desc,
        limit=args.limit,
    ))
    if not todos:
        print("No todos.")
        return 0
    for todo in todos:
        print(_format_todo(todo))
    return 0


def cmd_todos_show(args, store: Store, vault: CredentialVault) -> int:
    todo = _get_todo_or_fail(store, args.id)
    if todo is None:
        return 1
    print(_format_todo(todo))
    if todo.description:
        print(f"    {todo.description}")
    if todo.project_id:
        project = store.get_project(todo.project_id)
        print(f"    project: {project.name if project else todo.project_id}")
    for item in store.get_checklist_items(todo.id):
        print(f"    [{'x' if item.checked else ' '}] {item.text}  ({item.id})")
    for link in store.get_links_for_todo(todo.id):
        print(f"    -> {link.task_id} {link.task_title}  ({link.id})")
    return 0


def _set_todo_status(args, store: Store, status: TodoStatus) -> int:
    todo = _get_todo_or_fail(store, args.id)
    if todo is None:
        return 1
    todo.status = status
    store.update_todo(todo)
    print(f"{'Completed' if todo.is_complete else 'Reopened'} {todo.title}")
    return 0


def cmd_todos_done(args, store: Store, vault: CredentialVault) -> int:
    return _set_todo_status(args, store, TodoStatus.COMPLETE)


def cmd_todos_reopen(args, store: Store, vault: CredentialVault) -> int:
    return _set_todo_status(args, store, TodoStatus.OPEN)


def cmd_todos_remove(args, store: Store, vault: CredentialVault) -> int:
    if not store.delete_todo(args.id):
        print(f"No todo with id {args.id}", file=sys.stderr)
        return 1
    print(f"Removed todo {args.id}")
    return 0


def cmd_todos_check(args, store: Store, vault: CredentialVault) -> int:
    if _get_todo_or_fail(store, args.id) is None:
        return 1
    item = store.add_checklist_item(ChecklistItem(todo_id=args.id, text=args.text))
    print(f"Added checklist item {item.id}")
    return 0


def cmd_todos_toggle(args, store: Store, vault: CredentialVault) -> int:
    if not store.toggle_checklist_item(args.item_id):
        print(f"No checklist item with id {args.item_id}", file=sys.stderr)
        return 1
    print("Toggled")
    return 0


def cmd_todos_link(args, store: Store, vault: CredentialVault) -> int:
    if _get_todo_or_fail(store, args.id) is None:
        return 1
    if store.get_task_by_id(args.task_id) is None:
        logger.info(f"Task {args.task_id} is not cached yet; linking anyway")
    link = store.create_link(args.id, args.task_id)
    print(f"Linked {args.id} to {args.task_id} ({link.id})")
    return 0


def cmd_todos_unlink(args, store: Store, vault: CredentialVault) -> int:
    if not store.delete_link(args.link_id):
        print(f"No link with id {args.link_id}", file=sys.stderr)
        return 1
    print("Unlinked")
    return 0


def cmd_todos_tag(args, store: Store, vault: CredentialVault) -> int:
    if _get_todo_or_fail(store, args.id) is None:
        return 1
    known = {t.id for t in store.get_tags()}
    unknown = [t for t in args.tag_ids if t not in known]
    if unknown:
        print(f"Unknown tag id(s): {', '.join(unknown)}", file=sys.stderr)
        return 1
    store.set_todo_tags(args.id, args.tag_ids)
    print(f"Set {len(set(args.tag_ids))} tag(s) on {args.id}")
    return 0


def cmd_projects_list(args, store: Store, vault: CredentialVault) -> int:
    projects = store.get_projects(include_archived=args.all)
    if not projects:
        print("No projects.")
        return 0
    for project in projects:
        archived = "  (archived)" if project.archived else ""
        print(f"{project.id}  {project.name}{archived}")
    return 0


def cmd_projects_add(args, store: Store, vault: CredentialVault) -> int:
    project = store.create_project(Project(name=args.name, description=args.description or ""))
    print(f"Added project {project.name} ({project.id})")
    return 0


def cmd_projects_archive(args, store: Store, vault: CredentialVault) -> int:
    ok = store.restore_project(args.id) if args.restore else store.archive_project(args.id)
    if not ok:
        print(f"No project with id {args.id}", file=sys.stderr)
        return 1
    print("Restored" if args.restore else "Archived")
    return 0


def cmd_projects_remove(args, store: Store, vault: CredentialVault) -> int:
    if not store.delete_project(args.id):
        print(f"No project with id {args.id}", file=sys.stderr)
        return 1
    print(f"Removed project {args.id}; its todos moved to the inbox")
    return 0


def cmd_tags_list(args, store: Store, vault: CredentialVault) -> int:
    tags = store.get_tags()
    if not tags:
        print("No tags.")
    for tag in tags:
        print(f"{tag.id}  {tag.name}")
    return 0


def cmd_tags_add(args, store: Store, vault: CredentialVault) -> int:
    tag = store.create_tag(Tag(name=args.name, color=args.color or ""))
    print(f"Added tag {tag.name} ({tag.id})")
    return 0


def cmd_tags_remove(args, store: Store, vault: CredentialVault) -> int:
    if not store.delete_tag(args.id):
        print(f"No tag with id {args.id}", file=sys.stderr)
        return 1
    print(f"Removed tag {args.id}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskhub", description="Unified task inbox for Jira, Bitbucket and e-mail")
    parser.add_argument("--db-path", type=str, help="Override database path")
    parser.add_argument("--log-level", type=str, help="Logging level (default from TASKHUB_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create or migrate the database")
    p.add_argument("--seed-sources", type=str, help="YAML file with source definitions")
    p.set_defaults(func=cmd_init)

    sources = sub.add_parser("sources", help="Manage configured sources")
    ssub = sources.add_subparsers(dest="sources_command", required=True)

    p = ssub.add_parser("list", help="List sources")
    p.set_defaults(func=cmd_sources_list)

    p = ssub.add_parser("add", help="Add a source")
    p.add_argument("--type", required=True, choices=[t.value for t in SourceType])
    p.add_argument("--name", required=True)
    p.add_argument("--base-url", type=str)
    p.add_argument("--interval", type=int, default=0, help="Poll interval in seconds")
    p.add_argument("--config", action="append", metavar="KEY=VALUE", help="Adapter setting, repeatable")
    p.add_argument("--secret-env", type=str, help="Read the credential from this environment variable")
    p.add_argument("--disabled", action="store_true")
    p.set_defaults(func=cmd_sources_add)

    p = ssub.add_parser("remove", help="Remove a source and its credential")
    p.add_argument("id")
    p.set_defaults(func=cmd_sources_remove)

    p = ssub.add_parser("test", help="Validate a source's connection")
    p.add_argument("id")
    p.set_defaults(func=cmd_sources_test)

    p = sub.add_parser("sync", help="Run one synchronous fetch per source")
    p.add_argument("--source", type=str, help="Only this source id")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("watch", help="Poll in the background and print events")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("tasks", help="List cached tasks")
    p.add_argument("--source-type", choices=[t.value for t in SourceType])
    p.add_argument("--source", type=str, help="Source id")
    p.add_argument("--status", choices=[s.value for s in TaskStatus])
    p.add_argument("--query", type=str)
    p.add_argument("--sort", choices=sorted(SORT_COLUMNS), default=DEFAULT_SORT)
    order = p.add_mutually_exclusive_group()
    order.add_argument("--asc", action="store_true", help="Ascending order")
    order.add_argument("--desc", action="store_true", help="Descending order (default)")
    p.add_argument("--limit", type=int, default=50)
    p.add_argument("--offset", type=int, default=0)
    p.add_argument("--stale-minutes", type=int, help="Only tasks not refreshed for this long")
    p.set_defaults(func=cmd_tasks)

    p = sub.add_parser("notifications", help="Show or acknowledge notifications")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--mark-read", type=str, metavar="ID")
    group.add_argument("--all", action="store_true", help="Mark every notification read")
    p.set_defaults(func=cmd_notifications)

    todos = sub.add_parser("todos", help="Manage local todos")
    tsub = todos.add_subparsers(dest="todos_command", required=True)

    p = tsub.add_parser("add", help="Add a todo")
    p.add_argument("title")
    p.add_argument("--description", type=str)
    p.add_argument("--priority", type=int, choices=range(1, 6), default=3)
    p.add_argument("--due", type=_due_date, help="Due date, YYYY-MM-DD")
    p.add_argument("--project", type=str, help="Project id")
    p.set_defaults(func=cmd_todos_add)

    p = tsub.add_parser("list", help="List todos")
    p.add_argument("--status", choices=[s.value for s in TodoStatus])
    p.add_argument("--project", type=str, help=f"Project id, or '{INBOX}'")
    p.add_argument("--tag", action="append", metavar="TAG_ID", help="Tag id, repeatable")
    p.add_argument("--due", choices=[d.value for d in DueWindow])
    p.add_argument("--query", type=str)
    p.add_argument("--sort", choices=sorted(TODO_SORT_COLUMNS), default=DEFAULT_TODO_SORT)
    p.add_argument("--desc", action="store_true", help="Descending order")
    p.add_argument("--limit", type=int, default=0)
    p.set_defaults(func=cmd_todos_list)

    for name, func, help_text in (
        ("show", cmd_todos_show, "Show a todo with its checklist and links"),
        ("done", cmd_todos_done, "Mark a todo complete"),
        ("reopen", cmd_todos_reopen, "Reopen a completed todo"),
        ("remove", cmd_todos_remove, "Delete a todo"),
    ):
        p = tsub.add_parser(name, help=help_text)
        p.add_argument("id")
        p.set_defaults(func=func)

    p = tsub.add_parser("check", help="Add a checklist item")
    p.add_argument("id")
    p.add_argument("text")
    p.set_defaults(func=cmd_todos_check)

    p = tsub.add_parser("toggle", help="Toggle a checklist item")
    p.add_argument("item_id")
    p.set_defaults(func=cmd_todos_toggle)

    p = tsub.add_parser("link", help="Link a todo to a cached task")
    p.add_argument("id")
    p.add_argument("task_id")
    p.set_defaults(func=cmd_todos_link)

    p = tsub.add_parser("unlink", help="Remove a link")
    p.add_argument("link_id")
    p.set_defaults(func=cmd_todos_unlink)

    p = tsub.add_parser("tag", help="Replace a todo's tags")
    p.add_argument("id")
    p.add_argument("tag_ids", nargs="*")
    p.set_defaults(func=cmd_todos_tag)

    projects = sub.add_parser("projects", help="Manage projects")
    psub = projects.add_subparsers(dest="projects_command", required=True)

    p = psub.add_parser("list", help="List projects")
    p.add_argument("--all", action="store_true", help="Include archived projects")
    p.set_defaults(func=cmd_projects_list)

    p = psub.add_parser("add", help="Add a project")
    p.add_argument("name")
    p.add_argument("--description", type=str)
    p.set_defaults(func=cmd_projects_add)

    p = psub.add_parser("archive", help="Archive a project")
    p.add_argument("id")
    p.set_defaults(func=cmd_projects_archive, restore=False)

    p = psub.add_parser("restore", help="Restore an archived project")
    p.add_argument("id")
    p.set_defaults(func=cmd_projects_archive, restore=True)

    p = psub.add_parser("remove", help="Delete a project")
    p.add_argument("id")
    p.set_defaults(func=cmd_projects_remove)

    tags = sub.add_parser("tags", help="Manage tags")
    gsub = tags.add_subparsers(dest="tags_command", required=True)

    p = gsub.add_parser("list", help="List tags")
    p.set_defaults(func=cmd_tags_list)

    p = gsub.add_parser("add", help="Add a tag")
    p.add_argument("name")
    p.add_argument("--color", type=str)
    p.set_defaults(func=cmd_tags_add)

    p = gsub.add_parser("remove", help="Delete a tag")
    p.add_argument("id")
    p.set_defaults(func=cmd_tags_remove)

    return parser


def main(argv: Optional[list[str]] = None, vault: Optional[CredentialVault] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or get_settings().LOG_LEVEL)

    try:
        store = open_store(args.db_path)
    except StoreError as e:
        print(f"Cannot open task store: {e}", file=sys.stderr)
        return 1

    try:
        return args.func(args, store, vault or DotenvVault())
    except StoreError as e:
        print(f"Store error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
