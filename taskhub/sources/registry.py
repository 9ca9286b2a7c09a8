"""Build adapters from stored source configs and hand them to the poller."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from taskhub.credentials import CredentialVault
from taskhub.errors import CredentialError
from taskhub.integrations.bitbucket_client import BitbucketClient
from taskhub.integrations.jira_client import JiraClient
from taskhub.integrations.mail_client import IMAPClient, SMTPConfig, SMTPSender
from taskhub.models.source_config import SourceConfig
from taskhub.models.task import SourceType
from taskhub.sources.base import Source
from taskhub.sources.bitbucket import BitbucketSource
from taskhub.sources.jira import JiraSource
from taskhub.sources.mail import EmailSource

if TYPE_CHECKING:
    from taskhub.db.store import Store
    from taskhub.sync.poller import Poller

logger = logging.getLogger(__name__)

# config key holding the secret (or its keyring: reference) per source type
SECRET_KEYS = {
    SourceType.JIRA: "token",
    SourceType.BITBUCKET: "token",
    SourceType.EMAIL: "password",
}


def load_secret(cfg: SourceConfig, vault: CredentialVault) -> str:
    """Secret for ``cfg``: its keyring reference if present, else ``<type>-<id>``."""
    ref = cfg.credential_ref(SECRET_KEYS[SourceType(cfg.type)])
    return vault.get(ref or cfg.default_credential_key)


def _jira(cfg: SourceConfig, secret: str) -> Source:
    client = JiraClient(cfg.base_url, secret)
    return JiraSource(client, cfg.id, jql=cfg.config.get("jql", ""))


def _bitbucket(cfg: SourceConfig, secret: str) -> Source:
    return BitbucketSource(BitbucketClient(cfg.base_url, secret), cfg.id)


def _email(cfg: SourceConfig, secret: str) -> Source:
    conf = cfg.config
    use_tls = conf.get("tls", "true").lower() != "false"
    username = conf.get("username", "")
    imap = IMAPClient(
        host=conf.get("imap_host", ""),
        port=int(conf.get("imap_port") or (993 if use_tls else 143)),
        username=username,
        password=secret,
        use_tls=use_tls,
    )
    smtp = SMTPSender(SMTPConfig(
        host=conf.get("smtp_host", ""),
        port=int(conf.get("smtp_port") or (465 if use_tls else 587)),
        username=username,
        password=secret,
        use_tls=use_tls,
    ))
    return EmailSource(imap, smtp, cfg.id)


_BUILDERS: dict[SourceType, Callable[[SourceConfig, str], Source]] = {
    SourceType.JIRA: _jira,
    SourceType.BITBUCKET: _bitbucket,
    SourceType.EMAIL: _email,
}


def build_adapter(cfg: SourceConfig, vault: CredentialVault) -> Optional[Source]:
    """Adapter for ``cfg``, or None (logged) when it cannot be built."""
    try:
        source_type = SourceType(cfg.type)
    except ValueError:
        logger.warning(f"Skipping source {cfg.name!r} ({cfg.id}): unknown type {cfg.type!r}")
        return None
    if source_type == SourceType.EMAIL and not cfg.config.get("imap_host"):
        logger.warning(f"Skipping email source {cfg.name!r} ({cfg.id}): missing config")
        return None
    try:
        secret = load_secret(cfg, vault)
    except CredentialError as e:
        logger.warning(
            f"Skipping {source_type.value} source {cfg.name!r} ({cfg.id}): credential not found: {e}"
        )
        return None
    try:
        return _BUILDERS[source_type](cfg, secret)
    except ValueError as e:
        logger.warning(f"Skipping source {cfg.name!r} ({cfg.id}): invalid config: {e}")
        return None


def register_sources(poller: "Poller", store: "Store", vault: CredentialVault) -> int:
    """Register every enabled, buildable source with ``poller``. Returns the count."""
    registered = 0
    for cfg in store.get_sources(enabled_only=True):
        adapter = build_adapter(cfg, vault)
        if adapter is None:
            continue
        poller.register_source(adapter, cfg)
        registered += 1
    logger.info(f"Registered {registered} source(s) with the poller")
    return registered
