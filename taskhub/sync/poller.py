"""Background synchronisation: one worker thread per registered source.

Each worker fetches immediately on start, then again on every tick of its
poll interval or on a manual trigger, until the shared stop event is set.
Results go to a bounded event queue; producers never block on it.

Single Responsibility: schedules fetches and records their outcome.
Depends on the Source protocol and the Store façade only.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from taskhub.config import Settings, get_settings
from taskhub.errors import SourceConnectionError, StoreError, find_auth_error
from taskhub.models.notification import Notification
from taskhub.models.source_config import SourceConfig
from taskhub.models.task import SourceType, Task
from taskhub.sources.base import FetchOptions, FetchResult, Source
from taskhub.sync.events import (
    AuthErrorEvent,
    SyncErrorEvent,
    SyncEvent,
    SyncResultEvent,
    SyncState,
    SyncStatus,
    auth_prompt,
)
from taskhub.utils.redact import redact_error
from taskhub.utils.timefmt import utcnow

logger = logging.getLogger(__name__)

_MANUAL = "manual"
_STOP = "stop"


@dataclass
class _Worker:
    adapter: Source
    config: SourceConfig
    interval: float
    triggers: queue.Queue
    flight: threading.Lock
    thread: Optional[threading.Thread] = None

    @property
    def source_type(self) -> SourceType:
        return SourceType(self.adapter.source_type)


def call_with_timeout(func: Callable[[], Any], timeout: float, source_type: SourceType) -> Any:
    """Run ``func`` on a daemon thread and wait at most ``timeout`` seconds.

    A call that overruns keeps running in the background; its result is
    discarded and SourceConnectionError is raised.
    """
    box: dict[str, Any] = {}
    done = threading.Event()

    def target() -> None:
        try:
            box["value"] = func()
        except BaseException as e:
            box["error"] = e
        finally:
            done.set()

    threading.Thread(target=target, name=f"fetch-{SourceType(source_type).value}", daemon=True).start()
    if not done.wait(timeout):
        raise SourceConnectionError(source_type, f"fetch timed out after {timeout:g}s")
    if "error" in box:
        raise box["error"]
    return box["value"]


class Poller:
    """Keeps every registered source's cached tasks fresh."""

    def __init__(self, store: Any, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self._store = store
        self._fetch_timeout = settings.FETCH_TIMEOUT_SEC
        self._page_size = settings.FETCH_PAGE_SIZE
        self._default_interval = settings.DEFAULT_POLL_INTERVAL_SEC
        self._trigger_size = settings.TRIGGER_QUEUE_SIZE
        self._events: queue.Queue = queue.Queue(maxsize=settings.RESULT_QUEUE_SIZE)

        self._workers: dict[str, _Worker] = {}
        self._statuses: dict[str, SyncStatus] = {}
        self._status_lock = threading.Lock()

        self._stop = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._started = False

    # -- registration / lifecycle ----------------------------------------------

    def register_source(self, adapter: Source, config: SourceConfig) -> None:
        """Add a source. Must happen before :meth:`start`."""
        with self._lifecycle_lock:
            if self._started:
                raise RuntimeError("register_source() must be called before start()")
            if config.id in self._workers:
                raise ValueError(f"source {config.id} is already registered")
            interval = config.poll_interval_sec if config.poll_interval_sec > 0 else self._default_interval
            self._workers[config.id] = _Worker(
                adapter=adapter,
                config=config,
                interval=float(interval),
                triggers=queue.Queue(maxsize=self._trigger_size),
                flight=threading.Lock(),
            )
        with self._status_lock:
            self._statuses[config.id] = SyncStatus(
                source_id=config.id,
                source_type=SourceType(adapter.source_type),
                name=config.name,
            )
        logger.info(
            f"Registered {SourceType(adapter.source_type).value} source {config.name!r} "
            f"(every {interval}s)"
        )

    def start(self) -> None:
        """Spawn one worker per source. A second call while running is a no-op."""
        with self._lifecycle_lock:
            if self._stop.is_set():
                raise RuntimeError("a stopped Poller cannot be restarted; create a new one")
            if self._started:
                return
            self._started = True
            for worker in self._workers.values():
                worker.thread = threading.Thread(
                    target=self._run,
                    args=(worker,),
                    name=f"poller-{worker.source_type.value}-{worker.config.id[:8]}",
                    daemon=True,
                )
                worker.thread.start()
        logger.info(f"Poller started with {len(self._workers)} source(s)")

    def stop(self, join_timeout: Optional[float] = None) -> None:
        """Signal every worker to exit; in-flight fetches are not interrupted."""
        self._stop.set()
        for worker in self._workers.values():
            try:
                worker.triggers.put_nowait(_STOP)
            except queue.Full:
                # the worker re-checks the stop event after its next trigger
                pass
        if join_timeout is not None:
            for worker in self._workers.values():
                if worker.thread is not None:
                    worker.thread.join(join_timeout)
        logger.info("Poller stopped")

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    # -- manual refresh --------------------------------------------------------

    def refresh_all(self) -> None:
        for worker in self._workers.values():
            self._trigger(worker)

    def refresh_source(self, source_type: SourceType) -> None:
        """Trigger every worker of ``source_type``; never blocks."""
        wanted = SourceType(source_type)
        for worker in self._workers.values():
            if worker.source_type == wanted:
                self._trigger(worker)

    def _trigger(self, worker: _Worker) -> None:
        try:
            worker.triggers.put_nowait(_MANUAL)
        except queue.Full:
            logger.debug(f"Refresh for {worker.config.name!r} dropped, trigger queue full")

    # -- status / events -------------------------------------------------------

    def get_statuses(self) -> list[SyncStatus]:
        with self._status_lock:
            return list(self._statuses.values())

    def get_status(self, source_id: str) -> Optional[SyncStatus]:
        with self._status_lock:
            return self._statuses.get(source_id)

    def next_event(self, timeout: Optional[float] = None) -> Optional[SyncEvent]:
        """Next published event, or None when ``timeout`` elapses first."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def events(self, poll: float = 0.5) -> Iterator[SyncEvent]:
        """Yield events until the poller is stopped and the queue is drained."""
        while True:
            event = self.next_event(timeout=poll)
            if event is not None:
                yield event
            elif self._stop.is_set():
                return

    def _publish(self, event: SyncEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            logger.debug(f"Event queue full, dropped {type(event).__name__} for {event.source_type.value}")

    def _set_status(self, worker: _Worker, state: SyncState, error: str = "") -> None:
        with self._status_lock:
            previous = self._statuses[worker.config.id]
            last_sync = previous.last_sync
            if state == SyncState.IDLE and not error:
                last_sync = utcnow()
            self._statuses[worker.config.id] = SyncStatus(
                source_id=worker.config.id,
                source_type=worker.source_type,
                name=worker.config.name,
                state=state,
                last_sync=last_sync,
                error=error,
            )

    # -- worker loop -----------------------------------------------------------

    def _run(self, worker: _Worker) -> None:
        self._cycle(worker)
        next_tick = time.monotonic() + worker.interval
        while not self._stop.is_set():
            try:
                signal = worker.triggers.get(timeout=max(next_tick - time.monotonic(), 0))
            except queue.Empty:
                signal = None
            if signal == _STOP or self._stop.is_set():
                break
            if signal is None:
                now = time.monotonic()
                while next_tick <= now:
                    next_tick += worker.interval
            self._drain_triggers(worker)
            self._cycle(worker)
        logger.debug(f"Worker for {worker.config.name!r} exited")

    def _drain_triggers(self, worker: _Worker) -> None:
        """Coalesce queued manual triggers into the cycle about to run."""
        while True:
            try:
                signal = worker.triggers.get_nowait()
            except queue.Empty:
                return
            if signal == _STOP:
                # the stop event is already set; the loop exits after this cycle
                return

    def sync_now(self, source_id: str) -> bool:
        """Run one cycle for ``source_id`` in the calling thread.

        Returns False when a cycle for that source is already in flight.
        """
        worker = self._workers.get(source_id)
        if worker is None:
            raise KeyError(f"unknown source {source_id}")
        return self._cycle(worker)

    def _cycle(self, worker: _Worker) -> bool:
        if not worker.flight.acquire(blocking=False):
            logger.info(f"Skipping cycle for {worker.config.name!r}: one is already in flight")
            return False
        try:
            self._fetch_cycle(worker)
        except Exception as e:
            # last resort: a bug must not kill the worker thread
            logger.exception(f"Unexpected failure syncing {worker.config.name!r}")
            self._fail(worker, e)
        finally:
            worker.flight.release()
        return True

    def _fetch_cycle(self, worker: _Worker) -> None:
        self._set_status(worker, SyncState.RUNNING)
        opts = FetchOptions(page=1, page_size=self._page_size)
        try:
            result: FetchResult = call_with_timeout(
                lambda: worker.adapter.fetch_items(opts), self._fetch_timeout, worker.source_type
            )
        except Exception as e:
            self._fail(worker, e)
            return

        tasks = list(result.items)
        try:
            existing = self._store.existing_task_ids(t.id for t in tasks)
            self._store.upsert_tasks(tasks)
        except StoreError as e:
            self._fail(worker, e)
            return

        new_tasks: dict[str, Task] = {}
        for task in tasks:
            if task.id not in existing:
                new_tasks.setdefault(task.id, task)
        self._notify(worker, new_tasks.values())

        self._set_status(worker, SyncState.IDLE)
        logger.info(
            f"Synced {worker.source_type.value} source {worker.config.name!r}: "
            f"{len(tasks)} item(s), {len(new_tasks)} new"
        )
        self._publish(SyncResultEvent(
            source_type=worker.source_type,
            tasks=tasks,
            new_task_count=len(new_tasks),
            source_id=worker.config.id,
        ))

    def _notify(self, worker: _Worker, tasks) -> None:
        for task in tasks:
            try:
                self._store.create_notification(Notification(
                    task_id=task.id,
                    source_type=worker.source_type,
                    message=f"New {worker.source_type.value} item: {task.title}",
                ))
            except StoreError as e:
                logger.warning(f"Could not record notification for {task.id}: {e}")

    def _fail(self, worker: _Worker, exc: BaseException) -> None:
        message = redact_error(exc)
        self._set_status(worker, SyncState.ERROR, error=message)
        if find_auth_error(exc) is not None:
            logger.warning(f"Authentication failed for {worker.config.name!r}: {message}")
            self._publish(AuthErrorEvent(
                source_type=worker.source_type,
                message=auth_prompt(worker.source_type),
                source_id=worker.config.id,
            ))
        else:
            logger.warning(f"Sync failed for {worker.config.name!r}: {message}")
            self._publish(SyncErrorEvent(
                source_type=worker.source_type,
                error=message,
                source_id=worker.config.id,
            ))
