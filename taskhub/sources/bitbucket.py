"""Bitbucket Server/DC adapter: pull requests in the user's inbox."""

from __future__ import annotations

import logging

from taskhub.errors import ActionError, AuthError, SourceError
from taskhub.integrations.bitbucket_client import BitbucketClient, DiffResponse, PullRequest
from taskhub.models.task import SourceType, Task
from taskhub.sources.base import (
    Action,
    Comment,
    FetchOptions,
    FetchResult,
    ItemDetail,
    action_failures,
    paginate_in_memory,
    run_enrichments,
    unknown_action,
)
from taskhub.sources.crossref import jira_task_id, match_cross_refs
from taskhub.sync.status_mapper import bitbucket_priority, bitbucket_state
from taskhub.utils.timefmt import from_epoch_ms, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25
INBOX_ROLES = ("REVIEWER", "AUTHOR")

_ACTIONS = [
    Action(id="approve", name="Approve"),
    Action(id="unapprove", name="Unapprove"),
    Action(id="comment", name="Add Comment", requires_input=True, input_prompt="Enter comment text:"),
]


def parse_source_item_id(source_type: SourceType, source_item_id: str) -> tuple[str, str, int]:
    """Split ``PROJECT/repo-slug/123`` into its parts."""
    parts = source_item_id.split("/", 2)
    if len(parts) != 3:
        raise SourceError(
            source_type,
            f"invalid Bitbucket item id {source_item_id!r}: expected PROJECT/repo-slug/prID",
        )
    try:
        return parts[0], parts[1], int(parts[2])
    except ValueError as e:
        raise SourceError(source_type, f"invalid PR id in {source_item_id!r}") from e


def render_diff_summary(diff: DiffResponse) -> str:
    if not diff.diffs:
        return ""
    added = removed = 0
    for file_diff in diff.diffs:
        for hunk in file_diff.hunks:
            for segment in hunk.segments:
                if segment.type == "ADDED":
                    added += len(segment.lines)
                elif segment.type == "REMOVED":
                    removed += len(segment.lines)
    summary = f"{len(diff.diffs)} file(s), +{added}/-{removed} lines"
    if diff.truncated:
        summary += " (truncated)"
    return summary


def render_diff_detail(diff: DiffResponse) -> str:
    if not diff.diffs:
        return ""
    out = ["--- Diff ---"]
    for file_diff in diff.diffs:
        src = file_diff.source.to_string if file_diff.source else "(new file)"
        dst = file_diff.destination.to_string if file_diff.destination else "(deleted)"
        out.append("")
        out.append(f"--- a/{src}")
        out.append(f"+++ b/{dst}")
        for hunk in file_diff.hunks:
            out.append(
                f"@@ -{hunk.source_line},{hunk.source_span} "
                f"+{hunk.destination_line},{hunk.destination_span} @@"
            )
            for segment in hunk.segments:
                prefix = {"ADDED": "+", "REMOVED": "-"}.get(segment.type, " ")
                out.extend(f"{prefix}{line.line}" for line in segment.lines)
    return "\n".join(out) + "\n"


class BitbucketSource:
    """Presents Bitbucket pull requests through the Source contract."""

    def __init__(self, client: BitbucketClient, source_id: str):
        self._client = client
        self._source_id = source_id
        self._base_url = client.base_url

    @property
    def source_type(self) -> SourceType:
        return SourceType.BITBUCKET

    def validate_connection(self) -> str:
        username = self._client.whoami()
        if not username:
            raise AuthError(self.source_type, "whoami returned empty username; token may be invalid")
        try:
            user = self._client.get_user(username)
        except SourceError as e:
            logger.debug(f"Bitbucket user lookup for {username} failed: {e}")
            return username
        return user.display_name or username

    def fetch_items(self, opts: FetchOptions) -> FetchResult:
        opts = opts.normalised(DEFAULT_PAGE_SIZE)
        seen: set[str] = set()
        merged: list[PullRequest] = []
        for role in INBOX_ROLES:
            for pr in self._client.inbox_pull_requests(role, limit=opts.page_size):
                if pr.composite_key in seen:
                    continue
                seen.add(pr.composite_key)
                merged.append(pr)
        return paginate_in_memory([self.pr_to_task(pr) for pr in merged], opts)

    def search(self, query: str, opts: FetchOptions) -> FetchResult:
        # Bitbucket Server has no usable pull-request text search.
        return FetchResult.empty()

    def get_item_detail(self, source_item_id: str) -> ItemDetail:
        project, repo, pr_id = parse_source_item_id(self.source_type, source_item_id)
        pr = self._client.get_pull_request(project, repo, pr_id)

        metadata = {
            "Source Branch": pr.from_ref.display_id,
            "Target Branch": pr.to_ref.display_id,
            "Repository": f"{pr.from_ref.repository.project.key}/{pr.from_ref.repository.slug}",
        }
        if pr.reviewers:
            metadata["Reviewers"] = ", ".join(
                f"{r.user.display_name} ({r.status or 'UNAPPROVED'})" for r in pr.reviewers
            )
        detail = ItemDetail(
            task=self.pr_to_task(pr),
            rendered_body=pr.description or "",
            metadata=metadata,
        )

        def comments(d: ItemDetail) -> None:
            found = []
            for act in self._client.get_activities(project, repo, pr_id):
                if act.action == "COMMENTED" and act.comment is not None:
                    created = from_epoch_ms(act.comment.created_date)
                    found.append(Comment(
                        author=act.comment.author.display_name,
                        body=act.comment.text,
                        created_at=created.strftime("%Y-%m-%d %H:%M") if created else "",
                    ))
            d.comments = found

        def build_status(d: ItemDetail) -> None:
            if not pr.from_ref.latest_commit:
                return
            parts = [f"{b.name}: {b.state}" for b in self._client.get_build_statuses(pr.from_ref.latest_commit)]
            if parts:
                d.metadata["Build Status"] = ", ".join(parts)

        def diff(d: ItemDetail) -> None:
            diff_resp = self._client.get_diff(project, repo, pr_id)
            summary = render_diff_summary(diff_resp)
            if summary:
                d.metadata["Files Changed"] = summary
            rendered = render_diff_detail(diff_resp)
            if rendered:
                d.rendered_body = f"{d.rendered_body}\n\n{rendered}" if d.rendered_body else rendered

        def cross_refs(d: ItemDetail) -> None:
            keys = match_cross_refs(pr.from_ref.display_id, pr.title, pr.description or "")
            if keys:
                d.metadata["Jira References"] = ", ".join(keys)
                d.task.cross_refs = [jira_task_id(k) for k in keys]

        return run_enrichments(detail, [
            ("comments", comments),
            ("build status", build_status),
            ("diff", diff),
            ("cross references", cross_refs),
        ])

    def get_actions(self, source_item_id: str) -> list[Action]:
        return list(_ACTIONS)

    def execute_action(self, source_item_id: str, action: Action, input_text: str = "") -> None:
        project, repo, pr_id = parse_source_item_id(self.source_type, source_item_id)
        if action.id == "comment" and not input_text.strip():
            raise ActionError(self.source_type, "comment text must not be empty")
        with action_failures(self.source_type, action):
            if action.id == "approve":
                self._client.approve(project, repo, pr_id)
            elif action.id == "unapprove":
                self._client.unapprove(project, repo, pr_id)
            elif action.id == "comment":
                self._client.add_comment(project, repo, pr_id, input_text)
            else:
                raise unknown_action(self.source_type, action, source_item_id)

    def pr_to_task(self, pr: PullRequest) -> Task:
        repo = pr.from_ref.repository
        project_key, repo_slug = repo.project.key, repo.slug
        return Task(
            id=f"bb-{project_key}-{repo_slug}-{pr.id}",
            source_type=SourceType.BITBUCKET,
            source_item_id=f"{project_key}/{repo_slug}/{pr.id}",
            source_id=self._source_id,
            title=pr.title,
            description=pr.description or "",
            status=bitbucket_state(pr.state),
            priority=bitbucket_priority(r.status for r in pr.reviewers),
            assignee=pr.author.user.display_name,
            author=pr.author.user.display_name,
            source_url=f"{self._base_url}/projects/{project_key}/repos/{repo_slug}/pull-requests/{pr.id}",
            created_at=from_epoch_ms(pr.created_date),
            updated_at=from_epoch_ms(pr.updated_date),
            fetched_at=utcnow(),
            raw_data=pr.raw_json(),
        )
