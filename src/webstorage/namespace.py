"""
Web Storage style namespace over the shared cache.

One instance per logical namespace ("session", "local"). Every key is stored
as its own cache entry under ``<prefix><key>``; the ordered list of keys lives
in a single entry under ``<prefix>__index__`` and is the only thing
``length``, ``key(n)`` and ``entries()`` look at.

Index reads are optimistic and lock-free. Anything that changes the index
takes the namespace lock and re-reads the index inside it before writing, so
concurrent first writes of different keys never lose one another.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Optional, Tuple

from .backend import CacheBackend, get_cache
from .errors import BackendError, CorruptIndexError, StorageWriteError
from .locking import DEFAULT_TIMEOUT_MS, LockBackend, get_lock, hold

logger = logging.getLogger(__name__)

DEFAULT_TTL = 21600  # 6 hours

ReadHook = Callable[[str, Optional[str]], Any]


class StorageNamespace:
    def __init__(
        self,
        prefix: str,
        ttl: int = DEFAULT_TTL,
        on_get: Optional[ReadHook] = None,
        cache: Optional[CacheBackend] = None,
        lock: Optional[LockBackend] = None,
        lock_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._prefix = prefix
        self._ttl = ttl
        self._index_key = f"{prefix}__index__"
        self._on_get = on_get
        self._cache = cache
        self._lock = lock
        self.lock_timeout_ms = lock_timeout_ms

    # ── Plumbing ─────────────────────────────────────────────────

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def index_key(self) -> str:
        return self._index_key

    @property
    def cache(self) -> CacheBackend:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    @property
    def lock(self) -> LockBackend:
        if self._lock is None:
            self._lock = get_lock(f"{self._prefix}lock")
        return self._lock

    def set_read_hook(self, on_get: Optional[ReadHook]) -> None:
        self._on_get = on_get

    def prefixed(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def read_index(self) -> List[str]:
        """Current index snapshot; an absent index is an empty one."""
        raw = self.cache.get(self._index_key)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except ValueError:
            raise CorruptIndexError(self._index_key, raw) from None
        if not isinstance(keys, list):
            raise CorruptIndexError(self._index_key, raw)
        return [str(k) for k in keys]

    def _save_index(self, keys: List[str]) -> None:
        self._safe_put(self._index_key, json.dumps(keys))

    def _safe_put(self, cache_key: str, value: str) -> None:
        try:
            self.cache.put(cache_key, value, self._ttl)
        except BackendError as e:
            raise StorageWriteError(cache_key, e) from e

    def _update_index(self, mutate: Callable[[List[str]], Optional[List[str]]]) -> bool:
        """Re-read the index under the lock and persist ``mutate``'s result.

        ``mutate`` returns the new key list, or None to leave the index alone.
        """
        with hold(self.lock, self.lock_timeout_ms):
            fresh = self.read_index()
            updated = mutate(fresh)
            if updated is None:
                return False
            self._save_index(updated)
            return True

    # ── Storage API ──────────────────────────────────────────────

    @property
    def length(self) -> int:
        return len(self.read_index())

    def __len__(self) -> int:
        return self.length

    def key(self, n: int) -> Optional[str]:
        index = self.read_index()
        return index[n] if 0 <= n < len(index) else None

    def get_item(self, key: Any) -> Optional[str]:
        key = str(key)
        value = self.cache.get(self.prefixed(key))
        if self._on_get is not None:
            try:
                self._on_get(key, value)
            except Exception:  # noqa: BLE001
                logger.warning(f"Read hook failed for {self._prefix}{key}", exc_info=True)
        return value

    def set_item(self, key: Any, value: Any) -> None:
        key = str(key)
        self._safe_put(self.prefixed(key), str(value))

        if key in self.read_index():
            return

        def append(fresh: List[str]) -> Optional[List[str]]:
            if key in fresh:
                return None
            return fresh + [key]

        if self._update_index(append):
            logger.debug(f"Indexed {self._prefix}{key}")

    def remove_item(self, key: Any) -> None:
        key = str(key)
        if key not in self.read_index():
            return

        self.cache.remove(self.prefixed(key))

        def drop(fresh: List[str]) -> Optional[List[str]]:
            if key not in fresh:
                return None
            return [k for k in fresh if k != key]

        self._update_index(drop)

    def clear(self) -> None:
        with hold(self.lock, self.lock_timeout_ms):
            index = self.read_index()
            if index:
                self.cache.remove_all([self.prefixed(k) for k in index])
            self.cache.remove(self._index_key)
        logger.debug(f"Cleared {len(index)} keys from {self._prefix!r}")

    def entries(self) -> List[Tuple[str, Optional[str]]]:
        index = self.read_index()
        if not index:
            return []
        values = self.cache.get_all([self.prefixed(k) for k in index])
        return [(k, values.get(self.prefixed(k))) for k in index]

    def __repr__(self) -> str:
        return f"StorageNamespace(prefix={self._prefix!r}, ttl={self._ttl})"
