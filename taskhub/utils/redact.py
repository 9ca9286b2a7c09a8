"""Secret redaction utility: strip tokens/PII from logs and stored errors."""

from __future__ import annotations

import re

_PATTERNS = [
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]+"), "Bearer [TOKEN]"),
    (re.compile(r"(?i)(authorization[\"']?\s*[:=]\s*[\"']?)[^\s\"',]+"), r"\1[REDACTED]"),
    (re.compile(r"(?i)(password|passwd|secret|token)=([^&\s]+)"), r"\1=[REDACTED]"),
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@"), r"\1[CREDENTIALS]@"),
    (re.compile(r"[A-Za-z0-9]{40,}"), "[REDACTED_KEY]"),
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL]"),
]


def redact(text: str) -> str:
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_error(exc: BaseException) -> str:
    """Render an exception as a log-safe one-line message."""
    return redact(str(exc) or exc.__class__.__name__)
