"""Pure-function status/priority normalisation for every source.

Single Responsibility: only maps remote states.  No side effects.
"""

from __future__ import annotations

from typing import Iterable

from taskhub.models.task import Priority, TaskStatus


def jira_status(name: str, category_key: str) -> TaskStatus:
    """Map a Jira status → normalised status; any "review" status wins over its category."""
    if "review" in (name or "").lower():
        return TaskStatus.REVIEW
    category = (category_key or "").lower()
    if category == "indeterminate":
        return TaskStatus.IN_PROGRESS
    if category == "done":
        return TaskStatus.DONE
    return TaskStatus.OPEN


def jira_priority(priority_id: str) -> int:
    """Map Jira's numeric priority id (1 = Highest … 5 = Lowest) → 1..5."""
    try:
        pid = int(priority_id)
    except (TypeError, ValueError):
        return int(Priority.MEDIUM)
    if pid <= 2:
        return int(Priority.CRITICAL)
    if pid == 3:
        return int(Priority.HIGH)
    if pid == 4:
        return int(Priority.MEDIUM)
    if pid == 5:
        return int(Priority.LOW)
    return int(Priority.LOWEST)


def bitbucket_state(state: str) -> TaskStatus:
    if (state or "").upper() in ("MERGED", "DECLINED"):
        return TaskStatus.DONE
    return TaskStatus.OPEN


def bitbucket_priority(reviewer_statuses: Iterable[str]) -> int:
    """Needs work → High, any approval → Low, otherwise Medium."""
    approved = False
    for status in reviewer_statuses:
        s = (status or "").upper()
        if s == "NEEDS_WORK":
            return int(Priority.HIGH)
        if s == "APPROVED":
            approved = True
    return int(Priority.LOW) if approved else int(Priority.MEDIUM)


def email_flags(flags: Iterable[str]) -> tuple[TaskStatus, int]:
    """Map IMAP flags → (status, priority). Read mail is parked at Lowest."""
    flag_set = set(flags)
    if "\\Seen" in flag_set:
        return TaskStatus.IN_PROGRESS, int(Priority.LOWEST)
    if "\\Flagged" in flag_set:
        return TaskStatus.OPEN, int(Priority.HIGH)
    return TaskStatus.OPEN, int(Priority.MEDIUM)
