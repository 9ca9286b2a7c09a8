"""
Bitbucket Server/DC REST API 1.0 client
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar, Union

import requests
from pydantic import Field

from taskhub.integrations.rest import Payload, RestClient
from taskhub.models.task import SourceType

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 25


# -- response types ------------------------------------------------------------

class BBUser(Payload):
    name: str = ""
    display_name: str = Field(default="", alias="displayName")
    slug: str = ""


class Participant(Payload):
    user: BBUser = Field(default_factory=BBUser)
    role: str = ""
    approved: bool = False
    status: str = ""


class BBProject(Payload):
    key: str = ""
    name: str = ""


class Repository(Payload):
    slug: str = ""
    project: BBProject = Field(default_factory=BBProject)


class Ref(Payload):
    id: str = ""
    display_id: str = Field(default="", alias="displayId")
    latest_commit: str = Field(default="", alias="latestCommit")
    repository: Repository = Field(default_factory=Repository)


class PullRequest(Payload):
    id: int
    title: str = ""
    description: Optional[str] = None
    state: str = "OPEN"
    created_date: int = Field(default=0, alias="createdDate")
    updated_date: int = Field(default=0, alias="updatedDate")
    from_ref: Ref = Field(default_factory=Ref, alias="fromRef")
    to_ref: Ref = Field(default_factory=Ref, alias="toRef")
    author: Participant = Field(default_factory=Participant)
    reviewers: list[Participant] = Field(default_factory=list)

    @property
    def composite_key(self) -> str:
        repo = self.from_ref.repository
        return f"{repo.project.key}/{repo.slug}/{self.id}"


class ActivityComment(Payload):
    id: int = 0
    text: str = ""
    author: BBUser = Field(default_factory=BBUser)
    created_date: int = Field(default=0, alias="createdDate")


class Activity(Payload):
    id: int = 0
    action: str = ""
    comment: Optional[ActivityComment] = None
    created_date: int = Field(default=0, alias="createdDate")
    user: BBUser = Field(default_factory=BBUser)


class BuildStatus(Payload):
    state: str = ""
    key: str = ""
    name: str = ""
    url: str = ""


class DiffPath(Payload):
    to_string: str = Field(default="", alias="toString")


class DiffLine(Payload):
    source: int = 0
    destination: int = 0
    line: Union[str, int] = ""


class DiffSegment(Payload):
    type: str = "CONTEXT"
    lines: list[DiffLine] = Field(default_factory=list)


class DiffHunk(Payload):
    source_line: int = Field(default=0, alias="sourceLine")
    source_span: int = Field(default=0, alias="sourceSpan")
    destination_line: int = Field(default=0, alias="destinationLine")
    destination_span: int = Field(default=0, alias="destinationSpan")
    segments: list[DiffSegment] = Field(default_factory=list)


class FileDiff(Payload):
    source: Optional[DiffPath] = None
    destination: Optional[DiffPath] = None
    hunks: list[DiffHunk] = Field(default_factory=list)


class DiffResponse(Payload):
    diffs: list[FileDiff] = Field(default_factory=list)
    truncated: bool = False


class PagedPayload(Payload):
    start: int = 0
    limit: int = 0
    is_last_page: bool = Field(default=True, alias="isLastPage")
    next_page_start: Optional[int] = Field(default=None, alias="nextPageStart")


class PullRequestPage(PagedPayload):
    values: list[PullRequest] = Field(default_factory=list)


class ActivityPage(PagedPayload):
    values: list[Activity] = Field(default_factory=list)


class BuildStatusPage(PagedPayload):
    values: list[BuildStatus] = Field(default_factory=list)


PageT = TypeVar("PageT", bound=PagedPayload)


# -- client --------------------------------------------------------------------

class BitbucketClient(RestClient):
    """Thin Bitbucket Server REST client authenticated with an HTTP access token."""

    def __init__(self, base_url: str, token: str, **kwargs: Any):
        super().__init__(SourceType.BITBUCKET.value, base_url, token, **kwargs)

    def describe_error(self, response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:300]
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            return "; ".join(str(e.get("message", "")) for e in errors if isinstance(e, dict))
        return response.text[:300]

    def get_all_pages(
        self,
        path: str,
        page_model: Type[PageT],
        params: Optional[dict[str, Any]] = None,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> list[Any]:
        """Follow ``isLastPage``/``nextPageStart`` and return every value."""
        if limit <= 0:
            limit = DEFAULT_PAGE_LIMIT
        values: list[Any] = []
        start = 0
        while True:
            query = dict(params or {})
            query.update({"start": start, "limit": limit})
            page = self.get_model(path, page_model, params=query)
            values.extend(page.values)
            if page.is_last_page or page.next_page_start is None or page.next_page_start <= start:
                break
            start = page.next_page_start
        return values

    # -- identity --------------------------------------------------------------

    def whoami(self) -> str:
        return self.get_text("/plugins/servlet/applinks/whoami")

    def get_user(self, username: str) -> BBUser:
        return self.get_model(f"/rest/api/1.0/users/{username}", BBUser)

    # -- pull requests ---------------------------------------------------------

    def inbox_pull_requests(self, role: str, limit: int = DEFAULT_PAGE_LIMIT) -> list[PullRequest]:
        return self.get_all_pages(
            "/rest/api/1.0/inbox/pull-requests", PullRequestPage, params={"role": role}, limit=limit
        )

    @staticmethod
    def pr_path(project_key: str, repo_slug: str, pr_id: int) -> str:
        return f"/rest/api/1.0/projects/{project_key}/repos/{repo_slug}/pull-requests/{pr_id}"

    def get_pull_request(self, project_key: str, repo_slug: str, pr_id: int) -> PullRequest:
        return self.get_model(self.pr_path(project_key, repo_slug, pr_id), PullRequest)

    def get_activities(self, project_key: str, repo_slug: str, pr_id: int) -> list[Activity]:
        return self.get_all_pages(
            self.pr_path(project_key, repo_slug, pr_id) + "/activities", ActivityPage
        )

    def get_diff(self, project_key: str, repo_slug: str, pr_id: int) -> DiffResponse:
        return self.get_model(self.pr_path(project_key, repo_slug, pr_id) + "/diff", DiffResponse)

    def get_build_statuses(self, commit: str) -> list[BuildStatus]:
        return self.get_model(f"/rest/build-status/1.0/commits/{commit}", BuildStatusPage).values

    def approve(self, project_key: str, repo_slug: str, pr_id: int) -> None:
        self.post_json(self.pr_path(project_key, repo_slug, pr_id) + "/approve")

    def unapprove(self, project_key: str, repo_slug: str, pr_id: int) -> None:
        self.delete(self.pr_path(project_key, repo_slug, pr_id) + "/approve")

    def add_comment(self, project_key: str, repo_slug: str, pr_id: int, text: str) -> None:
        self.post_json(self.pr_path(project_key, repo_slug, pr_id) + "/comments", {"text": text})
