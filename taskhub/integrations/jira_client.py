"""
Jira Server/DC REST API v2 client
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from pydantic import Field

from taskhub.integrations.rest import Payload, RestClient
from taskhub.models.task import SourceType

logger = logging.getLogger(__name__)

# Fields requested for list and search queries.
FETCH_FIELDS = [
    "summary", "status", "priority", "assignee", "issuetype",
    "project", "created", "updated", "labels", "duedate",
]


# -- response types ------------------------------------------------------------

class JiraUser(Payload):
    key: str = ""
    name: str = ""
    display_name: str = Field(default="", alias="displayName")
    email_address: str = Field(default="", alias="emailAddress")


class StatusCategory(Payload):
    key: str = ""
    name: str = ""


class JiraStatus(Payload):
    id: str = ""
    name: str = ""
    status_category: StatusCategory = Field(default_factory=StatusCategory, alias="statusCategory")


class JiraPriority(Payload):
    id: str = ""
    name: str = ""


class IssueType(Payload):
    id: str = ""
    name: str = ""


class JiraProject(Payload):
    key: str = ""
    name: str = ""


class JiraComment(Payload):
    id: str = ""
    body: str = ""
    author: JiraUser = Field(default_factory=JiraUser)
    created: str = ""
    updated: str = ""


class CommentPage(Payload):
    comments: list[JiraComment] = Field(default_factory=list)
    total: int = 0


class IssueFields(Payload):
    summary: str = ""
    status: JiraStatus = Field(default_factory=JiraStatus)
    priority: Optional[JiraPriority] = None
    issue_type: IssueType = Field(default_factory=IssueType, alias="issuetype")
    assignee: Optional[JiraUser] = None
    reporter: Optional[JiraUser] = None
    project: JiraProject = Field(default_factory=JiraProject)
    created: str = ""
    updated: str = ""
    due_date: Optional[str] = Field(default=None, alias="duedate")
    labels: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    comment: Optional[CommentPage] = None


class RenderedFields(Payload):
    description: Optional[str] = None


class Transition(Payload):
    id: str
    name: str = ""


class Issue(Payload):
    id: str = ""
    key: str
    issue_fields: IssueFields = Field(default_factory=IssueFields, alias="fields")
    rendered_fields: Optional[RenderedFields] = Field(default=None, alias="renderedFields")
    transitions: list[Transition] = Field(default_factory=list)


class SearchResponse(Payload):
    start_at: int = Field(default=0, alias="startAt")
    max_results: int = Field(default=0, alias="maxResults")
    total: int = 0
    issues: list[Issue] = Field(default_factory=list)


class TransitionsResponse(Payload):
    transitions: list[Transition] = Field(default_factory=list)


class Myself(Payload):
    name: str = ""
    display_name: str = Field(default="", alias="displayName")
    email_address: str = Field(default="", alias="emailAddress")


# -- client --------------------------------------------------------------------

class JiraClient(RestClient):
    """Thin Jira REST client authenticated with a Personal Access Token."""

    def __init__(self, base_url: str, token: str, **kwargs: Any):
        super().__init__(SourceType.JIRA.value, base_url, token, **kwargs)

    def describe_error(self, response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:300]
        if not isinstance(body, dict):
            return response.text[:300]
        messages = list(body.get("errorMessages") or [])
        messages.extend(f"{k}: {v}" for k, v in (body.get("errors") or {}).items())
        return "; ".join(messages) or response.text[:300]

    def myself(self) -> Myself:
        return self.get_model("/rest/api/2/myself", Myself)

    def search(self, jql: str, start_at: int, max_results: int) -> SearchResponse:
        logger.debug(f"Jira search startAt={start_at} maxResults={max_results}")
        body = {
            "jql": jql,
            "fields": FETCH_FIELDS,
            "startAt": start_at,
            "maxResults": max_results,
        }
        return self.post_model("/rest/api/2/search", body, SearchResponse)

    def get_issue(self, key: str) -> Issue:
        return self.get_model(
            f"/rest/api/2/issue/{key}", Issue, params={"expand": "renderedFields,transitions"}
        )

    def get_transitions(self, key: str) -> list[Transition]:
        return self.get_model(f"/rest/api/2/issue/{key}/transitions", TransitionsResponse).transitions

    def add_comment(self, key: str, body: str) -> None:
        self.post_json(f"/rest/api/2/issue/{key}/comment", {"body": body})

    def transition(self, key: str, transition_id: str) -> None:
        # 204 No Content on success
        self.post_json(f"/rest/api/2/issue/{key}/transitions", {"transition": {"id": transition_id}})
