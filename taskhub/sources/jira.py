"""Jira Server/DC adapter: issues assigned to the token owner."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from taskhub.errors import ActionError
from taskhub.integrations.jira_client import Issue, JiraClient
from taskhub.models.task import SourceType, Task
from taskhub.sources.base import (
    Action,
    Comment,
    FetchOptions,
    FetchResult,
    ItemDetail,
    action_failures,
    strip_html,
    unknown_action,
)
from taskhub.sync.status_mapper import jira_priority, jira_status
from taskhub.utils.timefmt import utcnow

logger = logging.getLogger(__name__)

DEFAULT_JQL = "assignee=currentUser() AND resolution=Unresolved ORDER BY updated DESC"
DEFAULT_PAGE_SIZE = 50

_COMMENT_ACTION = Action(
    id="comment", name="Add Comment", requires_input=True, input_prompt="Enter comment text:"
)
_TRANSITION_PREFIX = "transition-"

_JIRA_TIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


def parse_jira_time(raw: str) -> Optional[datetime]:
    if not raw:
        return None
    for fmt in _JIRA_TIME_FORMATS:
        try:
            return datetime.strptime(raw, fmt).astimezone(timezone.utc)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable Jira timestamp {raw!r}")
        return None


def escape_jql(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class JiraSource:
    """Presents Jira issues through the Source contract."""

    def __init__(self, client: JiraClient, source_id: str, jql: str = ""):
        self._client = client
        self._source_id = source_id
        self._jql = jql or DEFAULT_JQL
        self._base_url = client.base_url

    @property
    def source_type(self) -> SourceType:
        return SourceType.JIRA

    def validate_connection(self) -> str:
        return self._client.myself().display_name

    def fetch_items(self, opts: FetchOptions) -> FetchResult:
        return self._search(self._jql, opts)

    def search(self, query: str, opts: FetchOptions) -> FetchResult:
        jql = f'text~"{escape_jql(query)}" AND assignee=currentUser() ORDER BY updated DESC'
        return self._search(jql, opts)

    def _search(self, jql: str, opts: FetchOptions) -> FetchResult:
        opts = opts.normalised(DEFAULT_PAGE_SIZE)
        start_at = opts.offset
        resp = self._client.search(jql, start_at, opts.page_size)
        tasks = [self.issue_to_task(issue) for issue in resp.issues]
        return FetchResult(
            items=tasks,
            total=resp.total,
            has_more=start_at + len(resp.issues) < resp.total,
        )

    def get_item_detail(self, source_item_id: str) -> ItemDetail:
        issue = self._client.get_issue(source_item_id)
        fields = issue.issue_fields

        rendered = ""
        if issue.rendered_fields is not None:
            rendered = strip_html(issue.rendered_fields.description)
        if not rendered:
            rendered = fields.description or ""

        metadata = {
            "Project": f"{fields.project.name} ({fields.project.key})",
            "Type": fields.issue_type.name,
        }
        if fields.labels:
            metadata["Labels"] = ", ".join(fields.labels)
        if fields.due_date:
            metadata["Due Date"] = fields.due_date

        comments = []
        if fields.comment is not None:
            comments = [
                Comment(author=c.author.display_name, body=c.body, created_at=c.created)
                for c in fields.comment.comments
            ]

        return ItemDetail(
            task=self.issue_to_task(issue),
            rendered_body=rendered,
            metadata=metadata,
            comments=comments,
        )

    def get_actions(self, source_item_id: str) -> list[Action]:
        transitions = self._client.get_transitions(source_item_id)
        actions = [_COMMENT_ACTION]
        actions.extend(Action(id=f"{_TRANSITION_PREFIX}{t.id}", name=t.name) for t in transitions)
        return actions

    def execute_action(self, source_item_id: str, action: Action, input_text: str = "") -> None:
        if action.id == _COMMENT_ACTION.id:
            if not input_text.strip():
                raise ActionError(self.source_type, "comment text must not be empty")
            with action_failures(self.source_type, action):
                self._client.add_comment(source_item_id, input_text)
            return
        if action.id.startswith(_TRANSITION_PREFIX):
            with action_failures(self.source_type, action):
                self._client.transition(source_item_id, action.id[len(_TRANSITION_PREFIX):])
            return
        raise unknown_action(self.source_type, action, source_item_id)

    def issue_to_task(self, issue: Issue) -> Task:
        fields = issue.issue_fields
        return Task(
            id=f"jira-{issue.key}",
            source_type=SourceType.JIRA,
            source_item_id=issue.key,
            source_id=self._source_id,
            title=fields.summary,
            description=fields.description or "",
            status=jira_status(fields.status.name, fields.status.status_category.key),
            priority=jira_priority(fields.priority.id if fields.priority else ""),
            assignee=fields.assignee.display_name if fields.assignee else "",
            author=fields.reporter.display_name if fields.reporter else "",
            source_url=f"{self._base_url}/browse/{issue.key}",
            created_at=parse_jira_time(fields.created),
            updated_at=parse_jira_time(fields.updated),
            fetched_at=utcnow(),
            raw_data=issue.raw_json(),
        )
