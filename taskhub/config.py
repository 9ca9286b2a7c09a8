"""
Central configuration loader.
Reads from environment variables (via .env) and optional YAML source files.
NEVER prints secret values.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskhub.errors import ConfigError
from taskhub.models.source_config import DEFAULT_POLL_INTERVAL_SEC, SourceConfig
from taskhub.models.task import SourceType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Load .env from repo root (if present)
# ---------------------------------------------------------------------------
_REPO_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_REPO_ROOT / ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # Paths
    BASE_DIR: Path = _REPO_ROOT
    DATABASE_PATH: Path = Field(
        default=_REPO_ROOT / "data" / "taskhub.db",
        validation_alias="TASKHUB_DATABASE_PATH",
    )
    SOURCES_FILE: Optional[Path] = Field(default=None, validation_alias="TASKHUB_SOURCES_FILE")
    SECRETS_FILE: Path = Field(
        default=_REPO_ROOT / ".secrets.env",
        validation_alias="TASKHUB_SECRETS_FILE",
    )

    # Sync
    DEFAULT_POLL_INTERVAL_SEC: int = Field(
        default=DEFAULT_POLL_INTERVAL_SEC, validation_alias="TASKHUB_DEFAULT_POLL_INTERVAL_SEC"
    )
    FETCH_TIMEOUT_SEC: float = Field(default=30.0, validation_alias="TASKHUB_FETCH_TIMEOUT_SEC")
    FETCH_PAGE_SIZE: int = Field(default=50, validation_alias="TASKHUB_FETCH_PAGE_SIZE")
    RESULT_QUEUE_SIZE: int = Field(default=16, validation_alias="TASKHUB_RESULT_QUEUE_SIZE")
    TRIGGER_QUEUE_SIZE: int = Field(default=16, validation_alias="TASKHUB_TRIGGER_QUEUE_SIZE")

    # Remote clients
    HTTP_TIMEOUT_SEC: float = Field(default=30.0, validation_alias="TASKHUB_HTTP_TIMEOUT_SEC")
    HTTP_MAX_RETRIES: int = Field(default=3, validation_alias="TASKHUB_HTTP_MAX_RETRIES")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", validation_alias="TASKHUB_LOG_LEVEL")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return (and lazily build) the module-level Settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Discard the singleton (useful in tests)."""
    global _settings
    _settings = None


# ---------------------------------------------------------------------------
# YAML source definitions
# ---------------------------------------------------------------------------
def load_sources_file(path: Path | str) -> list[SourceConfig]:
    """Read ``sources:`` entries from a YAML file.

    A missing file yields an empty list; a malformed one raises ConfigError.
    """
    path = Path(path)
    if not path.exists():
        logger.info(f"Sources file {path} not found, nothing to load")
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    entries = data.get("sources") or []
    if not isinstance(entries, list):
        raise ConfigError(f"{path}: 'sources' must be a list")

    return [_source_from_yaml(path, i, entry) for i, entry in enumerate(entries)]


def _source_from_yaml(path: Path, index: int, entry: Any) -> SourceConfig:
    if not isinstance(entry, dict):
        raise ConfigError(f"{path}: sources[{index}] must be a mapping")
    try:
        source_type = SourceType(str(entry["type"]).lower())
    except KeyError as e:
        raise ConfigError(f"{path}: sources[{index}] has no 'type'") from e
    except ValueError as e:
        raise ConfigError(f"{path}: sources[{index}] has unknown type {entry['type']!r}") from e

    raw_config = entry.get("config") or {}
    if not isinstance(raw_config, dict):
        raise ConfigError(f"{path}: sources[{index}].config must be a mapping")

    try:
        interval = int(entry.get("poll_interval_sec") or 0)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{path}: sources[{index}].poll_interval_sec must be an integer") from e

    cfg = SourceConfig(
        type=source_type,
        name=str(entry.get("name") or source_type.value),
        base_url=str(entry.get("base_url") or ""),
        enabled=bool(entry.get("enabled", True)),
        poll_interval_sec=interval if interval > 0 else DEFAULT_POLL_INTERVAL_SEC,
        config={str(k): str(v) for k, v in raw_config.items()},
    )
    if entry.get("id"):
        cfg.id = str(entry["id"])
    return cfg
