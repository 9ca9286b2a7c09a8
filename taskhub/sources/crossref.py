"""Cross-reference discovery: Jira issue keys mentioned in free text."""

from __future__ import annotations

import re
from typing import Iterable, Optional

JIRA_KEY_RE = re.compile(r"([A-Z][A-Z0-9]+-\d+)")


def extract_jira_keys(text: str) -> list[str]:
    """Issue keys in order of first appearance, without duplicates."""
    if not text:
        return []
    return list(dict.fromkeys(JIRA_KEY_RE.findall(text)))


def match_cross_refs(
    branch: str,
    title: str,
    description: str,
    known_keys: Optional[Iterable[str]] = None,
) -> list[str]:
    """Keys found in branch, title and description, optionally limited to ``known_keys``."""
    keys = extract_jira_keys("\n".join([branch or "", title or "", description or ""]))
    if known_keys is None:
        return keys
    allowed = set(known_keys)
    return [k for k in keys if k in allowed]


def jira_task_id(key: str) -> str:
    return f"jira-{key}"
