"""Configured connection to one remote service."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from taskhub.models.task import SourceType
from taskhub.utils.timefmt import from_db_time, to_db_time, utcnow

DEFAULT_POLL_INTERVAL_SEC = 120
CREDENTIAL_PREFIX = "keyring:"


@dataclass
class SourceConfig:
    """A configured source.

    ``config`` holds adapter-specific settings. Secrets never live here,
    only ``keyring:<key>`` references into the credential vault.
    """

    type: SourceType
    name: str
    base_url: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enabled: bool = True
    poll_interval_sec: int = DEFAULT_POLL_INTERVAL_SEC
    last_sync_at: Optional[datetime] = None
    last_error: str = ""
    config: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def effective_poll_interval(self) -> int:
        if self.poll_interval_sec <= 0:
            return DEFAULT_POLL_INTERVAL_SEC
        return self.poll_interval_sec

    @property
    def default_credential_key(self) -> str:
        return f"{SourceType(self.type).value}-{self.id}"

    def credential_ref(self, key: str = "token") -> Optional[str]:
        """Vault key referenced by ``config[key]``, if it is a keyring reference."""
        value = self.config.get(key, "")
        if value.startswith(CREDENTIAL_PREFIX):
            return value[len(CREDENTIAL_PREFIX):]
        return None

    def config_json(self) -> str:
        return json.dumps(self.config, sort_keys=True)

    @staticmethod
    def parse_config(raw: Optional[str]) -> dict[str, str]:
        if not raw:
            return {}
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return {}
        if not isinstance(value, dict):
            return {}
        return {str(k): str(v) for k, v in value.items()}

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": SourceType(self.type).value,
            "name": self.name,
            "base_url": self.base_url,
            "enabled": 1 if self.enabled else 0,
            "poll_interval_sec": self.poll_interval_sec,
            "last_sync_at": to_db_time(self.last_sync_at),
            "last_error": self.last_error,
            "config": self.config_json(),
            "created_at": to_db_time(self.created_at),
            "updated_at": to_db_time(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SourceConfig":
        return cls(
            id=row["id"],
            type=SourceType(row["type"]),
            name=row["name"],
            base_url=row.get("base_url") or "",
            enabled=bool(row.get("enabled", 1)),
            poll_interval_sec=int(row.get("poll_interval_sec") or 0),
            last_sync_at=from_db_time(row.get("last_sync_at")),
            last_error=row.get("last_error") or "",
            config=cls.parse_config(row.get("config")),
            created_at=from_db_time(row.get("created_at")) or utcnow(),
            updated_at=from_db_time(row.get("updated_at")) or utcnow(),
        )
