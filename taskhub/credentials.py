"""Credential vault: get/set/delete secrets by key.

Source configs only ever store ``keyring:<key>`` references; the secret
itself lives in the vault. The default vault keeps secrets in a separate
dotenv file managed with python-dotenv.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional, Protocol

from dotenv import dotenv_values, set_key, unset_key

from taskhub.errors import CredentialError
from taskhub.models.source_config import CREDENTIAL_PREFIX

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASKHUB_SECRET_"


class CredentialVault(Protocol):
    def get(self, key: str) -> str: ...

    def set(self, key: str, secret: str) -> None: ...

    def delete(self, key: str) -> None: ...


def env_name(key: str) -> str:
    """``jira-1f2e`` → ``TASKHUB_SECRET_JIRA_1F2E``."""
    return ENV_PREFIX + re.sub(r"[^A-Za-z0-9]", "_", key).upper()


class DotenvVault:
    """Secrets in a dotenv file; the process environment takes precedence on read."""

    def __init__(self, path: Optional[Path | str] = None):
        if path is None:
            from taskhub.config import get_settings
            path = get_settings().SECRETS_FILE
        self.path = Path(path)

    def get(self, key: str) -> str:
        name = env_name(key)
        value = os.environ.get(name)
        if not value and self.path.exists():
            value = dotenv_values(self.path).get(name)
        if not value:
            raise CredentialError(f"credential {key!r} not found")
        return value

    def set(self, key: str, secret: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch(mode=0o600)
        ok, _, _ = set_key(str(self.path), env_name(key), secret)
        if not ok:
            raise CredentialError(f"could not store credential {key!r}")
        logger.info(f"Stored credential {key}")

    def delete(self, key: str) -> None:
        if not self.path.exists():
            raise CredentialError(f"credential {key!r} not found")
        ok, _ = unset_key(str(self.path), env_name(key))
        if not ok:
            raise CredentialError(f"credential {key!r} not found")
        logger.info(f"Deleted credential {key}")


class MemoryVault:
    """In-process vault for tests and one-off scripts."""

    def __init__(self, secrets: Optional[dict[str, str]] = None):
        self._secrets = dict(secrets or {})

    def get(self, key: str) -> str:
        try:
            return self._secrets[key]
        except KeyError:
            raise CredentialError(f"credential {key!r} not found") from None

    def set(self, key: str, secret: str) -> None:
        self._secrets[key] = secret

    def delete(self, key: str) -> None:
        if self._secrets.pop(key, None) is None:
            raise CredentialError(f"credential {key!r} not found")


def resolve_secret(value: str, vault: CredentialVault) -> str:
    """Resolve a ``keyring:<key>`` reference; other values are returned unchanged."""
    if value.startswith(CREDENTIAL_PREFIX):
        return vault.get(value[len(CREDENTIAL_PREFIX):])
    return value
