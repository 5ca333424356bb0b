"""Configuration loader for the storage layer."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/storage.defaults.yml")
CONFIG_PATH_ENV = "WEBSTORAGE_CONFIG"


@dataclass(frozen=True)
class RemoteConfig:
    base_url: str
    timeout_sec: int


@dataclass(frozen=True)
class StorageConfig:
    backend: str
    db_path: Path
    remote: RemoteConfig
    ttl_sec: int
    debounce_window_sec: int
    lock_timeout_ms: int
    lock_lease_sec: int
    trigger_period_hours: int
    session_prefix: str
    local_prefix: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        remote_data = data.get("remote", {}) or {}
        backend = data.get("backend", "sqlite")
        if backend not in ("sqlite", "remote"):
            raise ValueError(f"unknown backend {backend!r} (expected 'sqlite' or 'remote')")
        return cls(
            backend=backend,
            db_path=Path(os.path.expanduser(data.get("db_path", "~/.webstorage/cache.db"))),
            remote=RemoteConfig(
                base_url=str(remote_data.get("base_url", "http://localhost:8080")),
                timeout_sec=int(remote_data.get("timeout_sec", 10)),
            ),
            ttl_sec=int(data.get("ttl_sec", 21600)),
            debounce_window_sec=int(data.get("debounce_window_sec", 3600)),
            lock_timeout_ms=int(data.get("lock_timeout_ms", 5000)),
            lock_lease_sec=int(data.get("lock_lease_sec", 30)),
            trigger_period_hours=int(data.get("trigger_period_hours", 5)),
            session_prefix=data.get("session_prefix", "ss__"),
            local_prefix=data.get("local_prefix", "ls__"),
        )


ENV_MAP = {
    "backend": "WEBSTORAGE_BACKEND",
    "db_path": "WEBSTORAGE_DB_PATH",
    "remote.base_url": "WEBSTORAGE_REMOTE_URL",
    "remote.timeout_sec": "WEBSTORAGE_REMOTE_TIMEOUT_SEC",
    "ttl_sec": "WEBSTORAGE_TTL_SEC",
    "debounce_window_sec": "WEBSTORAGE_DEBOUNCE_WINDOW_SEC",
    "lock_timeout_ms": "WEBSTORAGE_LOCK_TIMEOUT_MS",
    "lock_lease_sec": "WEBSTORAGE_LOCK_LEASE_SEC",
    "trigger_period_hours": "WEBSTORAGE_TRIGGER_PERIOD_HOURS",
}

INT_FIELDS = {
    "timeout_sec",
    "ttl_sec",
    "debounce_window_sec",
    "lock_timeout_ms",
    "lock_lease_sec",
    "trigger_period_hours",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data, default=str))  # deep copy via json

    for dotted_key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        value: Any = os.environ[env_name]
        target = merged
        parts = dotted_key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        last = parts[-1]
        if last in INT_FIELDS:
            value = int(value)
        target[last] = value

    return merged


def load_config(config_path: Optional[str | Path] = None) -> StorageConfig:
    """Load settings from YAML, falling back to built-in defaults.

    An explicit ``config_path`` must exist. Without one, ``$WEBSTORAGE_CONFIG``
    or ``config/storage.defaults.yml`` is read when present.
    """
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = load_yaml(path)
    else:
        path = Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
        if path.exists():
            data = load_yaml(path)
        else:
            logger.debug(f"No config file at {path}, using built-in defaults")
            data = {}

    data = merge_env_overrides(data)
    return StorageConfig.from_dict(data)
