"""Error taxonomy shared by adapters, the store and the poller.

Adapters wrap transport failures with ``raise ... from exc`` so the
original cause stays on the chain; the poller only needs
:func:`is_auth_error` to tell "ask the user" apart from "retry later".
"""

from __future__ import annotations

from typing import Optional


class TaskHubError(Exception):
    """Root of every error raised by this package."""


class SourceError(TaskHubError):
    """An error attributed to one remote source."""

    def __init__(self, source_type: str, message: str):
        super().__init__(message)
        self.source_type = str(getattr(source_type, "value", source_type))
        self.message = message

    def __str__(self) -> str:
        return f"{self.source_type}: {self.message}"


class SourceConnectionError(SourceError, ConnectionError):
    """Network failure or timeout while talking to a remote service."""


class AuthError(SourceError):
    """Credentials are missing, expired or rejected; retrying will not help."""

    def __str__(self) -> str:
        return f"auth error ({self.source_type}): {self.message}"


class ValidationError(SourceError):
    """The remote service answered with a payload of unexpected shape."""


class ActionError(SourceError):
    """An item action is unknown to the adapter or was rejected remotely."""


class StoreError(TaskHubError):
    """Local persistence failure."""


class ConfigError(TaskHubError):
    """Invalid configuration file or value."""


class CredentialError(TaskHubError):
    """A secret could not be read from or written to the vault."""


def find_auth_error(exc: Optional[BaseException]) -> Optional[AuthError]:
    """Return the first AuthError on the cause/context chain of ``exc``."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, AuthError):
            return exc
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return None


def is_auth_error(exc: Optional[BaseException]) -> bool:
    return find_auth_error(exc) is not None
