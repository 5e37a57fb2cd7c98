"""Environment-driven settings for the hub process."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///usbhub.sqlite3"
DEFAULT_EVENTS_LIMIT = 100
MAX_EVENTS_LIMIT = 500

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %d", key, raw, default)
        return default


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = (env.get(key) or "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


@dataclass(slots=True)
class HubSettings:
    """Configuration bundle shared by the API app, the stores and the CLI."""

    database_url: str = DEFAULT_DATABASE_URL
    events_default_limit: int = DEFAULT_EVENTS_LIMIT
    events_max_limit: int = MAX_EVENTS_LIMIT
    activity_log: Optional[str] = None
    purge_clients_on_startup: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.events_max_limit <= 0:
            self.events_max_limit = MAX_EVENTS_LIMIT
        self.events_default_limit = min(max(1, self.events_default_limit), self.events_max_limit)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "HubSettings":
        env = os.environ if env is None else env
        return cls(
            database_url=env.get("USBHUB_DATABASE_URL") or DEFAULT_DATABASE_URL,
            events_default_limit=_env_int(env, "USBHUB_EVENTS_DEFAULT_LIMIT", DEFAULT_EVENTS_LIMIT),
            events_max_limit=_env_int(env, "USBHUB_EVENTS_MAX_LIMIT", MAX_EVENTS_LIMIT),
            activity_log=env.get("USBHUB_ACTIVITY_LOG") or None,
            purge_clients_on_startup=_env_bool(env, "USBHUB_PURGE_CLIENTS_ON_STARTUP", True),
            log_level=(env.get("USBHUB_LOG_LEVEL") or "INFO").upper(),
        )


__all__ = ["HubSettings", "DEFAULT_DATABASE_URL", "DEFAULT_EVENTS_LIMIT", "MAX_EVENTS_LIMIT"]
