"""Unit tests for the source adapters, status mapping and cross references.

Remote clients are mocked; adapters are exercised through the Source contract.
"""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from taskhub.credentials import MemoryVault
from taskhub.errors import ActionError, AuthError, SourceError
from taskhub.integrations.bitbucket_client import (
    BBUser,
    BitbucketClient,
    BuildStatus,
    DiffResponse,
    PullRequest,
)
from taskhub.integrations.jira_client import Issue, JiraClient, SearchResponse, Transition
from taskhub.integrations.mail_client import (
    Envelope,
    IMAPClient,
    ParsedMessage,
    SMTPConfig,
    SMTPSender,
    build_reply,
    parse_fetch_response,
    parse_message,
)
from taskhub.models.source_config import SourceConfig
from taskhub.models.task import Priority, SourceType, TaskStatus
from taskhub.sources.base import Action, FetchOptions, Source, paginate_in_memory, strip_html
from taskhub.sources.bitbucket import BitbucketSource, parse_source_item_id
from taskhub.sources.crossref import extract_jira_keys, match_cross_refs
from taskhub.sources.jira import JiraSource, escape_jql, parse_jira_time
from taskhub.sources.mail import EmailSource, format_size, sanitize_id
from taskhub.sources.registry import build_adapter
from taskhub.sync.status_mapper import (
    bitbucket_priority,
    bitbucket_state,
    email_flags,
    jira_priority,
    jira_status,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _issue(key: str = "PROJ-1", **field_overrides) -> Issue:
    fields = {
        "summary": "Fix login",
        "description": "Steps to reproduce",
        "status": {"name": "In Progress", "statusCategory": {"key": "indeterminate"}},
        "priority": {"id": "2", "name": "High"},
        "issuetype": {"name": "Bug"},
        "assignee": {"displayName": "Alice"},
        "reporter": {"displayName": "Bob"},
        "project": {"key": "PROJ", "name": "Project"},
        "created": "2024-01-02T10:00:00.000+0000",
        "updated": "2024-01-03T11:30:00.000+0100",
        "labels": ["backend"],
        "customfield_10010": "kept",
    }
    fields.update(field_overrides)
    return Issue.model_validate({"id": "10001", "key": key, "fields": fields})


def _jira(total: int = 1, issues=None):
    client = MagicMock(spec=JiraClient)
    client.base_url = "https://jira.example.com"
    client.search.return_value = SearchResponse(
        total=total, issues=issues if issues is not None else [_issue()]
    )
    return JiraSource(client, "src-jira"), client


def _pr(pr_id: int = 7, project: str = "PROJ", repo: str = "api", **overrides) -> PullRequest:
    data = {
        "id": pr_id,
        "title": "PROJ-12: speed up login",
        "description": "Also touches OPS-3",
        "state": "OPEN",
        "createdDate": 1704189600000,
        "updatedDate": 1704276000000,
        "fromRef": {
            "displayId": "feature/PROJ-12-login",
            "latestCommit": "abc123",
            "repository": {"slug": repo, "project": {"key": project}},
        },
        "toRef": {"displayId": "main", "repository": {"slug": repo, "project": {"key": project}}},
        "author": {"user": {"displayName": "Carol"}},
        "reviewers": [{"user": {"displayName": "Dan"}, "status": "APPROVED"}],
    }
    data.update(overrides)
    return PullRequest.model_validate(data)


def _bitbucket():
    client = MagicMock(spec=BitbucketClient)
    client.base_url = "https://bitbucket.example.com"
    return BitbucketSource(client, "src-bb"), client


def _email():
    imap = MagicMock(spec=IMAPClient)
    smtp = MagicMock(spec=SMTPSender)
    smtp.config = SMTPConfig(host="smtp.example.com", port=465, username="me@example.com")
    return EmailSource(imap, smtp, "src-mail"), imap, smtp


_RAW_MAIL = (
    b"Message-ID: <abc@example.com>\r\n"
    b"Subject: Quarterly report\r\n"
    b"From: Eve <eve@example.com>\r\n"
    b"To: me@example.com\r\n"
    b"Date: Tue, 02 Jan 2024 10:00:00 +0000\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Please review.\r\n"
)


# ===========================================================================
# 1. Status mapper (pure functions)
# ===========================================================================

class TestStatusMapper(unittest.TestCase):
    def test_jira_categories(self):
        self.assertEqual(jira_status("To Do", "new"), TaskStatus.OPEN)
        self.assertEqual(jira_status("In Progress", "indeterminate"), TaskStatus.IN_PROGRESS)
        self.assertEqual(jira_status("Closed", "done"), TaskStatus.DONE)

    def test_jira_review_name_wins(self):
        self.assertEqual(jira_status("Code Review", "indeterminate"), TaskStatus.REVIEW)

    def test_jira_priority(self):
        self.assertEqual(jira_priority("1"), 1)
        self.assertEqual(jira_priority("3"), 2)
        self.assertEqual(jira_priority("5"), 4)
        self.assertEqual(jira_priority(""), int(Priority.MEDIUM))

    def test_bitbucket(self):
        self.assertEqual(bitbucket_state("MERGED"), TaskStatus.DONE)
        self.assertEqual(bitbucket_state("OPEN"), TaskStatus.OPEN)
        self.assertEqual(bitbucket_priority(["APPROVED", "NEEDS_WORK"]), int(Priority.HIGH))
        self.assertEqual(bitbucket_priority(["APPROVED"]), int(Priority.LOW))
        self.assertEqual(bitbucket_priority([]), int(Priority.MEDIUM))

    def test_email_flags(self):
        self.assertEqual(email_flags(["\\Seen", "\\Flagged"]), (TaskStatus.IN_PROGRESS, 5))
        self.assertEqual(email_flags(["\\Flagged"]), (TaskStatus.OPEN, 2))
        self.assertEqual(email_flags([]), (TaskStatus.OPEN, 3))


# ===========================================================================
# 2. Shared helpers
# ===========================================================================

class TestSourceHelpers(unittest.TestCase):
    def test_default_page_correction(self):
        opts = FetchOptions(page=0, page_size=-1).normalised(25)
        self.assertEqual((opts.page, opts.page_size, opts.offset), (1, 25, 0))

    def test_paginate_in_memory(self):
        source, _ = _jira()
        tasks = [source.issue_to_task(_issue(f"PROJ-{i}")) for i in range(5)]
        page = paginate_in_memory(tasks, FetchOptions(page=2, page_size=2))
        self.assertEqual([t.source_item_id for t in page.items], ["PROJ-2", "PROJ-3"])
        self.assertTrue(page.has_more)
        self.assertEqual(page.total, 5)
        beyond = paginate_in_memory(tasks, FetchOptions(page=9, page_size=2))
        self.assertEqual((beyond.items, beyond.has_more), ([], False))

    def test_strip_html(self):
        self.assertEqual(strip_html("<p>a &amp; b</p><p>c</p>"), "a & b\nc")

    def test_cross_refs(self):
        self.assertEqual(extract_jira_keys("feature_PROJ-1 and PROJ-1, OPS-22"), ["PROJ-1", "OPS-22"])
        self.assertEqual(match_cross_refs("feature/PROJ-1", "x", "OPS-2", known_keys=["OPS-2"]), ["OPS-2"])
        self.assertEqual(extract_jira_keys("no keys here, lower-1"), [])


# ===========================================================================
# 3. Jira adapter
# ===========================================================================

class TestJiraSource(unittest.TestCase):
    def test_satisfies_source_protocol(self):
        source, _ = _jira()
        self.assertIsInstance(source, Source)

    def test_fetch_maps_issue(self):
        source, client = _jira(total=3)
        result = source.fetch_items(FetchOptions(page=1, page_size=1))
        client.search.assert_called_once()
        self.assertEqual(client.search.call_args.args[1:], (0, 1))
        task = result.items[0]
        self.assertEqual(task.id, "jira-PROJ-1")
        self.assertEqual(task.source_item_id, "PROJ-1")
        self.assertEqual(task.source_id, "src-jira")
        self.assertEqual(task.status, TaskStatus.IN_PROGRESS)
        self.assertEqual(task.priority, 1)
        self.assertEqual(task.assignee, "Alice")
        self.assertEqual(task.source_url, "https://jira.example.com/browse/PROJ-1")
        self.assertEqual(task.updated_at, datetime(2024, 1, 3, 10, 30, tzinfo=timezone.utc))
        self.assertTrue(result.has_more)
        self.assertIn("customfield_10010", json.loads(task.raw_data)["fields"])

    def test_ids_are_deterministic(self):
        source, _ = _jira()
        self.assertEqual(source.issue_to_task(_issue()).id, source.issue_to_task(_issue()).id)

    def test_default_page_size(self):
        source, client = _jira()
        source.fetch_items(FetchOptions())
        self.assertEqual(client.search.call_args.args[1:], (0, 50))

    def test_search_escapes_query(self):
        source, client = _jira()
        source.search('say "hi"', FetchOptions())
        self.assertIn('text~"say \\"hi\\""', client.search.call_args.args[0])
        self.assertEqual(escape_jql("a\\b"), "a\\\\b")

    def test_detail(self):
        source, client = _jira()
        client.get_issue.return_value = Issue.model_validate({
            "key": "PROJ-1",
            "fields": {
                "summary": "S", "labels": ["x", "y"], "duedate": "2024-02-01",
                "project": {"key": "PROJ", "name": "Project"}, "issuetype": {"name": "Story"},
                "comment": {"comments": [{"body": "looks good", "author": {"displayName": "Bob"}}]},
            },
            "renderedFields": {"description": "<p>Rendered</p>"},
        })
        detail = source.get_item_detail("PROJ-1")
        self.assertEqual(detail.rendered_body, "Rendered")
        self.assertEqual(detail.metadata["Project"], "Project (PROJ)")
        self.assertEqual(detail.metadata["Labels"], "x, y")
        self.assertEqual(detail.metadata["Due Date"], "2024-02-01")
        self.assertEqual(detail.comments[0].author, "Bob")

    def test_actions_include_transitions(self):
        source, client = _jira()
        client.get_transitions.return_value = [Transition(id="31", name="Done")]
        ids = [a.id for a in source.get_actions("PROJ-1")]
        self.assertEqual(ids, ["comment", "transition-31"])

    def test_execute_transition_and_comment(self):
        source, client = _jira()
        source.execute_action("PROJ-1", Action(id="transition-31", name="Done"))
        client.transition.assert_called_once_with("PROJ-1", "31")
        source.execute_action("PROJ-1", Action(id="comment", name="c"), "hello")
        client.add_comment.assert_called_once_with("PROJ-1", "hello")

    def test_empty_comment_rejected(self):
        source, client = _jira()
        with self.assertRaises(ActionError):
            source.execute_action("PROJ-1", Action(id="comment", name="c"), "  ")
        client.add_comment.assert_not_called()

    def test_unknown_action(self):
        source, _ = _jira()
        with self.assertRaises(ActionError) as ctx:
            source.execute_action("PROJ-1", Action(id="explode", name="?"))
        self.assertIn("explode", str(ctx.exception))

    def test_rejected_transition_becomes_action_error(self):
        source, client = _jira()
        cause = SourceError("jira", "HTTP 400: transition not allowed")
        client.transition.side_effect = cause
        with self.assertRaises(ActionError) as ctx:
            source.execute_action("PROJ-1", Action(id="transition-31", name="Done"))
        self.assertIs(ctx.exception.__cause__, cause)
        self.assertIn("Done failed", str(ctx.exception))

    def test_auth_failure_during_action_propagates_unchanged(self):
        source, client = _jira()
        client.add_comment.side_effect = AuthError("jira", "token expired")
        with self.assertRaises(AuthError) as ctx:
            source.execute_action("PROJ-1", Action(id="comment", name="c"), "hello")
        self.assertNotIsInstance(ctx.exception, ActionError)

    def test_parse_jira_time_variants(self):
        self.assertEqual(parse_jira_time("2024-01-02T10:00:00+0000"),
                         datetime(2024, 1, 2, 10, tzinfo=timezone.utc))
        self.assertIsNone(parse_jira_time(""))
        self.assertIsNone(parse_jira_time("yesterday"))


# ===========================================================================
# 4. Bitbucket adapter
# ===========================================================================

class TestBitbucketSource(unittest.TestCase):
    def test_fetch_dedupes_roles(self):
        source, client = _bitbucket()
        client.inbox_pull_requests.side_effect = [[_pr(1), _pr(2)], [_pr(2), _pr(3)]]
        result = source.fetch_items(FetchOptions())
        self.assertEqual([t.id for t in result.items], ["bb-PROJ-api-1", "bb-PROJ-api-2", "bb-PROJ-api-3"])
        roles = [c.args[0] for c in client.inbox_pull_requests.call_args_list]
        self.assertEqual(roles, ["REVIEWER", "AUTHOR"])

    def test_pr_to_task(self):
        source, _ = _bitbucket()
        task = source.pr_to_task(_pr())
        self.assertEqual(task.source_item_id, "PROJ/api/7")
        self.assertEqual(task.priority, int(Priority.LOW))
        self.assertEqual(task.status, TaskStatus.OPEN)
        self.assertEqual(task.author, "Carol")
        self.assertEqual(task.source_url,
                         "https://bitbucket.example.com/projects/PROJ/repos/api/pull-requests/7")
        self.assertEqual(task.created_at, datetime(2024, 1, 2, 10, tzinfo=timezone.utc))

    def test_search_is_empty(self):
        source, client = _bitbucket()
        result = source.search("anything", FetchOptions())
        self.assertEqual(result.items, [])
        client.inbox_pull_requests.assert_not_called()

    def test_validate_connection(self):
        source, client = _bitbucket()
        client.whoami.return_value = "carol"
        client.get_user.return_value = BBUser(name="carol", displayName="Carol C")
        self.assertEqual(source.validate_connection(), "Carol C")
        client.get_user.side_effect = SourceError("bitbucket", "404")
        self.assertEqual(source.validate_connection(), "carol")
        client.whoami.return_value = ""
        with self.assertRaises(AuthError):
            source.validate_connection()

    def test_detail_with_all_enrichments(self):
        source, client = _bitbucket()
        client.get_pull_request.return_value = _pr()
        client.get_activities.return_value = []
        client.get_build_statuses.return_value = [BuildStatus(name="ci", state="SUCCESSFUL")]
        client.get_diff.return_value = DiffResponse.model_validate({"diffs": [{
            "source": {"toString": "a.py"}, "destination": {"toString": "a.py"},
            "hunks": [{"sourceLine": 1, "sourceSpan": 1, "destinationLine": 1, "destinationSpan": 2,
                       "segments": [{"type": "ADDED", "lines": [{"line": "x = 1"}]}]}],
        }]})
        detail = source.get_item_detail("PROJ/api/7")
        self.assertEqual(detail.metadata["Build Status"], "ci: SUCCESSFUL")
        self.assertEqual(detail.metadata["Files Changed"], "1 file(s), +1/-0 lines")
        self.assertIn("+x = 1", detail.rendered_body)
        self.assertEqual(detail.metadata["Jira References"], "PROJ-12, OPS-3")
        self.assertEqual(detail.task.cross_refs, ["jira-PROJ-12", "jira-OPS-3"])

    def test_failed_enrichment_keeps_base_detail(self):
        source, client = _bitbucket()
        client.get_pull_request.return_value = _pr()
        client.get_activities.side_effect = SourceError("bitbucket", "boom")
        client.get_build_statuses.side_effect = SourceError("bitbucket", "boom")
        client.get_diff.side_effect = SourceError("bitbucket", "boom")
        detail = source.get_item_detail("PROJ/api/7")
        self.assertEqual(detail.metadata["Target Branch"], "main")
        self.assertNotIn("Build Status", detail.metadata)
        self.assertEqual(detail.comments, [])
        self.assertIn("Jira References", detail.metadata)

    def test_bad_item_id(self):
        with self.assertRaises(SourceError):
            parse_source_item_id(SourceType.BITBUCKET, "PROJ/api")
        with self.assertRaises(SourceError):
            parse_source_item_id(SourceType.BITBUCKET, "PROJ/api/x")

    def test_actions(self):
        source, client = _bitbucket()
        source.execute_action("PROJ/api/7", Action(id="approve", name="Approve"))
        client.approve.assert_called_once_with("PROJ", "api", 7)
        with self.assertRaises(ActionError):
            source.execute_action("PROJ/api/7", Action(id="merge", name="Merge"))

    def test_remote_failure_wrapped_but_auth_kept(self):
        source, client = _bitbucket()
        client.approve.side_effect = SourceError("bitbucket", "HTTP 409: already approved")
        with self.assertRaises(ActionError) as ctx:
            source.execute_action("PROJ/api/7", Action(id="approve", name="Approve"))
        self.assertIsInstance(ctx.exception.__cause__, SourceError)

        client.unapprove.side_effect = AuthError("bitbucket", "bad token")
        with self.assertRaises(AuthError) as ctx:
            source.execute_action("PROJ/api/7", Action(id="unapprove", name="Unapprove"))
        self.assertNotIsInstance(ctx.exception, ActionError)


# ===========================================================================
# 5. E-mail adapter
# ===========================================================================

class TestEmailSource(unittest.TestCase):
    def test_envelope_ids(self):
        source, _, _ = _email()
        with_id = source.envelope_to_task(Envelope(uid=4, message_id="a+b@x.com", subject="Hi"))
        without = source.envelope_to_task(Envelope(uid=4, subject="Hi"))
        self.assertEqual(with_id.id, "email-a_b_x.com")
        self.assertEqual(without.id, "email-uid-4")
        self.assertEqual(with_id.source_item_id, "4")

    def test_fetch_windows_and_pages(self):
        source, imap, _ = _email()
        imap.fetch_envelopes.return_value = [Envelope(uid=i, subject=f"m{i}") for i in range(10, 0, -1)]
        result = source.fetch_items(FetchOptions(page=2, page_size=3))
        imap.fetch_envelopes.assert_called_once_with(limit=100, since_days=7)
        self.assertEqual([t.title for t in result.items], ["m7", "m6", "m5"])
        self.assertTrue(result.has_more)

    def test_blank_search_is_empty(self):
        source, imap, _ = _email()
        self.assertEqual(source.search("   ", FetchOptions()).items, [])
        imap.search.assert_not_called()

    def test_reply_sends_and_marks_answered(self):
        source, imap, smtp = _email()
        imap.fetch_message.return_value = parse_message(5, [], _RAW_MAIL)
        source.execute_action("5", Action(id="reply", name="Reply"), "Thanks!")
        sent = smtp.send.call_args.args[0]
        self.assertEqual(sent["Subject"], "Re: Quarterly report")
        self.assertEqual(sent["In-Reply-To"], "<abc@example.com>")
        imap.set_flags.assert_called_once_with(5, ["\\Answered"], True)

    def test_empty_reply_rejected(self):
        source, _, smtp = _email()
        with self.assertRaises(ActionError):
            source.execute_action("5", Action(id="reply", name="Reply"), "")
        smtp.send.assert_not_called()

    def test_flag_actions(self):
        source, imap, _ = _email()
        source.execute_action("5", Action(id="mark_unread", name="Mark Unread"))
        imap.set_flags.assert_called_once_with(5, ["\\Seen"], False)

    def test_invalid_uid(self):
        source, _, _ = _email()
        with self.assertRaises(SourceError):
            source.execute_action("abc", Action(id="archive", name="Archive"))

    def test_imap_failure_during_action_becomes_action_error(self):
        source, imap, _ = _email()
        imap.move_to_archive.side_effect = SourceError("email", "NO [TRYCREATE] Archive")
        with self.assertRaises(ActionError) as ctx:
            source.execute_action("5", Action(id="archive", name="Archive"))
        self.assertIn("Archive failed", str(ctx.exception))

        imap.set_flags.side_effect = AuthError("email", "login rejected")
        with self.assertRaises(AuthError):
            source.execute_action("5", Action(id="mark_unread", name="Mark Unread"))

    def test_detail_metadata(self):
        source, imap, _ = _email()
        imap.fetch_message.return_value = parse_message(5, ["\\Seen"], _RAW_MAIL)
        detail = source.get_item_detail("5")
        self.assertEqual(detail.rendered_body.strip(), "Please review.")
        self.assertEqual(detail.metadata["Message-ID"], "abc@example.com")
        self.assertEqual(detail.metadata["To"], "me@example.com")
        self.assertEqual(detail.task.status, TaskStatus.IN_PROGRESS)

    def test_helpers(self):
        self.assertEqual(sanitize_id("<a b>"), "_a_b_")
        self.assertEqual(format_size(2048), "2.0 KB")


class TestMailParsing(unittest.TestCase):
    def test_parse_fetch_response_flags_after_literal(self):
        data = [(b"1 (UID 42 BODY[] {10}", b"raw"), b" FLAGS (\\Seen))"]
        self.assertEqual(parse_fetch_response(data), [(42, ["\\Seen"], b"raw")])

    def test_build_reply_keeps_existing_prefix(self):
        original = ParsedMessage(envelope=Envelope(uid=1, subject="RE: hi", sender="x@y.z"))
        msg = build_reply(original, "me@y.z", "ok")
        self.assertEqual(msg["Subject"], "RE: hi")
        self.assertIsNone(msg["In-Reply-To"])


# ===========================================================================
# 6. Registry
# ===========================================================================

class TestRegistry(unittest.TestCase):
    def test_builds_jira_with_keyring_reference(self):
        cfg = SourceConfig(type=SourceType.JIRA, name="Work", base_url="https://jira.example.com",
                           config={"token": "keyring:work-token"})
        adapter = build_adapter(cfg, MemoryVault({"work-token": "secret"}))
        self.assertIsInstance(adapter, JiraSource)

    def test_falls_back_to_default_key(self):
        cfg = SourceConfig(type=SourceType.BITBUCKET, name="Code", base_url="https://bb.example.com")
        adapter = build_adapter(cfg, MemoryVault({cfg.default_credential_key: "secret"}))
        self.assertIsInstance(adapter, BitbucketSource)

    def test_missing_credential_skips(self):
        cfg = SourceConfig(type=SourceType.JIRA, name="Work", base_url="https://jira.example.com")
        self.assertIsNone(build_adapter(cfg, MemoryVault()))

    def test_email_without_host_skips(self):
        cfg = SourceConfig(type=SourceType.EMAIL, name="Mail")
        self.assertIsNone(build_adapter(cfg, MemoryVault({cfg.default_credential_key: "pw"})))

    def test_email_with_bad_port_skips(self):
        cfg = SourceConfig(type=SourceType.EMAIL, name="Mail",
                           config={"imap_host": "imap.example.com", "imap_port": "abc"})
        self.assertIsNone(build_adapter(cfg, MemoryVault({cfg.default_credential_key: "pw"})))


if __name__ == "__main__":
    unittest.main()
