"""Source contract shared by every adapter.

Adapters are independent classes that satisfy the :class:`Source`
protocol structurally; the poller and the store never branch on the
concrete type.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Protocol, Sequence, runtime_checkable

from taskhub.errors import ActionError, AuthError, SourceError
from taskhub.models.task import SourceType, Task

logger = logging.getLogger(__name__)


@dataclass
class FetchOptions:
    page: int = 1
    page_size: int = 0

    def normalised(self, default_page_size: int) -> "FetchOptions":
        """Copy with ``page < 1`` → 1 and ``page_size < 1`` → the adapter default."""
        return FetchOptions(
            page=self.page if self.page >= 1 else 1,
            page_size=self.page_size if self.page_size >= 1 else default_page_size,
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class FetchResult:
    items: list[Task] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    @classmethod
    def empty(cls) -> "FetchResult":
        return cls()


@dataclass
class Comment:
    author: str
    body: str
    created_at: str = ""


@dataclass
class ItemDetail:
    task: Task
    rendered_body: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    comments: list[Comment] = field(default_factory=list)


@dataclass(frozen=True)
class Action:
    id: str
    name: str
    requires_input: bool = False
    input_prompt: str = ""


@runtime_checkable
class Source(Protocol):
    """Capability set every remote system is presented through."""

    @property
    def source_type(self) -> SourceType: ...

    def validate_connection(self) -> str:
        """Authenticate and return a human-readable identity."""
        ...

    def fetch_items(self, opts: FetchOptions) -> FetchResult: ...

    def get_item_detail(self, source_item_id: str) -> ItemDetail: ...

    def get_actions(self, source_item_id: str) -> list[Action]: ...

    def execute_action(self, source_item_id: str, action: Action, input_text: str = "") -> None: ...

    def search(self, query: str, opts: FetchOptions) -> FetchResult: ...


# ---------------------------------------------------------------------------
# Helpers shared by adapters
# ---------------------------------------------------------------------------

def paginate_in_memory(items: Sequence[Task], opts: FetchOptions) -> FetchResult:
    """Slice an already-fetched bounded window; ``opts`` must be normalised."""
    total = len(items)
    start = opts.offset
    if start >= total:
        return FetchResult(items=[], total=total, has_more=False)
    end = start + opts.page_size
    return FetchResult(items=list(items[start:end]), total=total, has_more=end < total)


EnrichmentStep = Callable[[ItemDetail], None]


def run_enrichments(detail: ItemDetail, steps: Sequence[tuple[str, EnrichmentStep]]) -> ItemDetail:
    """Run best-effort detail steps in order.

    A failing step leaves ``detail`` as the previous steps left it, so only
    the metadata that step would have added goes missing.
    """
    for name, step in steps:
        try:
            step(detail)
        except Exception as e:
            logger.debug(f"Detail enrichment '{name}' skipped for {detail.task.id}: {e}")
    return detail


def unknown_action(source_type: SourceType, action: Action, source_item_id: str) -> ActionError:
    return ActionError(source_type, f"unknown action {action.id!r} for item {source_item_id}")


@contextmanager
def action_failures(source_type: SourceType, action: Action) -> Iterator[None]:
    """Re-raise a remote failure inside the block as ActionError.

    AuthError passes through unchanged so callers can still prompt for
    new credentials.
    """
    try:
        yield
    except (AuthError, ActionError):
        raise
    except SourceError as e:
        raise ActionError(source_type, f"{action.name or action.id} failed: {e.message}") from e


_TAG_RE = re.compile(r"<[^>]*>")
_BLOCK_TAG_RE = re.compile(r"<br\s*/?>|</p>|</div>|</li>", re.IGNORECASE)


def strip_html(markup: Optional[str]) -> str:
    """Plain-text rendering of an HTML fragment for terminal display."""
    if not markup:
        return ""
    text = _BLOCK_TAG_RE.sub("\n", markup)
    text = _TAG_RE.sub("", text)
    text = html_lib.unescape(text).replace("\xa0", " ")
    while "\n\n\n" in text:
        text = text.replace("\n\n\n", "\n\n")
    return text.strip()
