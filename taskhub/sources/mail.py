"""E-mail adapter: recent inbox messages over IMAP, replies over SMTP."""

from __future__ import annotations

import json
import logging
import re

from taskhub.errors import ActionError, SourceError
from taskhub.integrations.mail_client import (
    Envelope,
    IMAPClient,
    SMTPSender,
    build_reply,
)
from taskhub.models.task import SourceType, Task
from taskhub.sources.base import (
    Action,
    FetchOptions,
    FetchResult,
    ItemDetail,
    action_failures,
    paginate_in_memory,
    strip_html,
    unknown_action,
)
from taskhub.sync.status_mapper import email_flags
from taskhub.utils.timefmt import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
FETCH_WINDOW = 100
FETCH_SINCE_DAYS = 7

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

_ACTIONS = [
    Action(id="reply", name="Reply", requires_input=True, input_prompt="Enter reply text:"),
    Action(id="archive", name="Archive"),
    Action(id="flag", name="Flag"),
    Action(id="unflag", name="Unflag"),
    Action(id="mark_read", name="Mark Read"),
    Action(id="mark_unread", name="Mark Unread"),
]

# action id -> (flag, add)
_FLAG_ACTIONS = {
    "flag": ("\\Flagged", True),
    "unflag": ("\\Flagged", False),
    "mark_read": ("\\Seen", True),
    "mark_unread": ("\\Seen", False),
}


def sanitize_id(value: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", value)


def format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


class EmailSource:
    """Presents mailbox messages through the Source contract."""

    def __init__(self, imap: IMAPClient, smtp: SMTPSender, source_id: str):
        self._imap = imap
        self._smtp = smtp
        self._source_id = source_id

    @property
    def source_type(self) -> SourceType:
        return SourceType.EMAIL

    def validate_connection(self) -> str:
        return self._imap.validate()

    def fetch_items(self, opts: FetchOptions) -> FetchResult:
        opts = opts.normalised(DEFAULT_PAGE_SIZE)
        envelopes = self._imap.fetch_envelopes(limit=FETCH_WINDOW, since_days=FETCH_SINCE_DAYS)
        return paginate_in_memory([self.envelope_to_task(e) for e in envelopes], opts)

    def search(self, query: str, opts: FetchOptions) -> FetchResult:
        if not query.strip():
            return FetchResult.empty()
        opts = opts.normalised(DEFAULT_PAGE_SIZE)
        tasks = [self.envelope_to_task(e) for e in self._imap.search(query, limit=opts.page_size)]
        return FetchResult(items=tasks, total=len(tasks), has_more=False)

    def get_item_detail(self, source_item_id: str) -> ItemDetail:
        parsed = self._imap.fetch_message(self._parse_uid(source_item_id))
        env = parsed.envelope

        rendered = parsed.text_body
        if not rendered and parsed.html_body:
            rendered = strip_html(parsed.html_body)

        metadata: dict[str, str] = {}
        if env.message_id:
            metadata["Message-ID"] = env.message_id
        if env.to:
            metadata["To"] = ", ".join(env.to)
        if env.flags:
            metadata["Flags"] = ", ".join(env.flags)
        if parsed.attachments:
            metadata["Attachments"] = "; ".join(
                f"{a.filename} ({a.mime_type}, {format_size(a.size)})" for a in parsed.attachments
            )

        return ItemDetail(task=self.envelope_to_task(env), rendered_body=rendered, metadata=metadata)

    def get_actions(self, source_item_id: str) -> list[Action]:
        return list(_ACTIONS)

    def execute_action(self, source_item_id: str, action: Action, input_text: str = "") -> None:
        uid = self._parse_uid(source_item_id)
        with action_failures(self.source_type, action):
            if action.id == "reply":
                self._reply(uid, input_text)
            elif action.id == "archive":
                self._imap.move_to_archive(uid)
            elif action.id in _FLAG_ACTIONS:
                flag, add = _FLAG_ACTIONS[action.id]
                self._imap.set_flags(uid, [flag], add)
            else:
                raise unknown_action(self.source_type, action, source_item_id)

    def _reply(self, uid: int, body: str) -> None:
        if not body.strip():
            raise ActionError(self.source_type, "reply text must not be empty")
        original = self._imap.fetch_message(uid)
        self._smtp.send(build_reply(original, self._smtp.config.username, body))
        self._imap.set_flags(uid, ["\\Answered"], True)

    def _parse_uid(self, source_item_id: str) -> int:
        try:
            return int(source_item_id)
        except ValueError as e:
            raise SourceError(self.source_type, f"invalid email UID {source_item_id!r}") from e

    def envelope_to_task(self, env: Envelope) -> Task:
        status, priority = email_flags(env.flags)
        task_id = f"email-{sanitize_id(env.message_id)}" if env.message_id else f"email-uid-{env.uid}"
        return Task(
            id=task_id,
            source_type=SourceType.EMAIL,
            source_item_id=str(env.uid),
            source_id=self._source_id,
            title=env.subject,
            author=env.sender,
            status=status,
            priority=priority,
            created_at=env.date,
            updated_at=env.date,
            fetched_at=utcnow(),
            raw_data=json.dumps(env.to_dict()),
        )
