"""
Public entry points: the two storage namespaces and the local keep-alive.

Usage:
    from webstorage import api

    api.session_storage.set_item("token", "abc")
    api.local_storage.get_item("prefs")     # also keeps local data alive
    api.install_local_storage_trigger()     # optional 5-hourly backstop

Everything is built lazily on first use from ``load_config()`` and reused for
the life of the process.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .config import StorageConfig, load_config
from .keepalive import REFRESH_FN, KeepAliveManager
from .namespace import StorageNamespace
from .scheduler import register_entry_point

logger = logging.getLogger(__name__)


@dataclass
class StorageContext:
    session_storage: StorageNamespace
    local_storage: StorageNamespace
    keepalive: KeepAliveManager


def build_context(config: Optional[StorageConfig] = None, **overrides) -> StorageContext:
    """Wire both namespaces; ``overrides`` (cache, scheduler, locks) are for hosts and tests."""
    config = config or load_config()
    cache = overrides.get("cache")

    session = StorageNamespace(
        config.session_prefix,
        ttl=config.ttl_sec,
        cache=cache,
        lock=overrides.get("session_lock"),
        lock_timeout_ms=config.lock_timeout_ms,
    )
    local = StorageNamespace(
        config.local_prefix,
        ttl=config.ttl_sec,
        cache=cache,
        lock=overrides.get("local_lock"),
        lock_timeout_ms=config.lock_timeout_ms,
    )
    keepalive = KeepAliveManager(
        local,
        scheduler=overrides.get("scheduler"),
        debounce_window=config.debounce_window_sec,
        trigger_period_hours=config.trigger_period_hours,
    )
    # Any read of local storage opportunistically keeps it alive
    local.set_read_hook(keepalive.on_read)
    return StorageContext(session, local, keepalive)


_context: Optional[StorageContext] = None
_context_guard = threading.Lock()


def get_context() -> StorageContext:
    global _context
    with _context_guard:
        if _context is None:
            _context = build_context()
            logger.debug("Storage context initialized")
        return _context


def set_context(context: Optional[StorageContext]) -> None:
    global _context
    with _context_guard:
        _context = context


def reset_context() -> None:
    set_context(None)


def get_session_storage() -> StorageNamespace:
    return get_context().session_storage


def get_local_storage() -> StorageNamespace:
    return get_context().local_storage


def install_local_storage_trigger() -> Optional[str]:
    return get_context().keepalive.install()


def uninstall_local_storage_trigger() -> bool:
    return get_context().keepalive.uninstall()


@register_entry_point(REFRESH_FN)
def refresh_local_storage_cache() -> bool:
    """Unconditional refresh; what the scheduled job runs."""
    return get_context().keepalive.refresh(debounce=False)


def __getattr__(name: str):
    if name == "session_storage":
        return get_session_storage()
    if name == "local_storage":
        return get_local_storage()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
