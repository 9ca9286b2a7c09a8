"""Messages the poller publishes for the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from taskhub.models.task import SourceType, Task


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of one registered source. Replaced whole, never mutated."""

    source_id: str
    source_type: SourceType
    name: str = ""
    state: SyncState = SyncState.IDLE
    last_sync: Optional[datetime] = None
    error: str = ""


@dataclass(frozen=True)
class SyncResultEvent:
    source_type: SourceType
    tasks: list[Task] = field(default_factory=list)
    new_task_count: int = 0
    source_id: str = ""


@dataclass(frozen=True)
class SyncErrorEvent:
    source_type: SourceType
    error: str
    source_id: str = ""


@dataclass(frozen=True)
class AuthErrorEvent:
    source_type: SourceType
    message: str
    source_id: str = ""


SyncEvent = Union[SyncResultEvent, SyncErrorEvent, AuthErrorEvent]


def auth_prompt(source_type: SourceType) -> str:
    return f"{SourceType(source_type).value}: authentication expired. Please reconfigure credentials."
