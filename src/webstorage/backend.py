#!/usr/bin/env python3
"""
Cache Backend: the shared, expiring key/value store under every namespace

Implements:
- get(key) → value | None
- get_all(keys) → {key: value} for keys still live
- put(key, value, ttl) / put_all(mapping, ttl)
- remove(key) / remove_all(keys)
- get_stats() → {hits, misses, writes, evictions, live_entries}

The store is shared: both namespaces and any unrelated tenant write into the
same table, so a write can silently evict somebody else's entry once the
live-entry cap is reached.
"""

import logging
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from .errors import BackendError, ValueTooLargeError

logger = logging.getLogger(__name__)

MAX_VALUE_BYTES = 100 * 1024
MAX_ENTRIES = 1000
MAX_TTL = 21600  # 6 hours

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    written_at REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at);
CREATE INDEX IF NOT EXISTS idx_cache_written ON cache_entries(written_at);
"""


@runtime_checkable
class CacheBackend(Protocol):
    """What a namespace needs from the underlying cache."""

    def get(self, key: str) -> Optional[str]: ...

    def get_all(self, keys: Iterable[str]) -> Dict[str, str]: ...

    def put(self, key: str, value: str, ttl: int) -> None: ...

    def put_all(self, mapping: Dict[str, str], ttl: int) -> None: ...

    def remove(self, key: str) -> None: ...

    def remove_all(self, keys: Iterable[str]) -> None: ...


def check_value(key: str, value: str, limit: int = MAX_VALUE_BYTES) -> None:
    """Reject non-string or oversized values before anything is written."""
    if not isinstance(value, str):
        raise BackendError(f"value for {key!r} must be str, got {type(value).__name__}")
    size = len(value.encode("utf-8"))
    if size > limit:
        raise ValueTooLargeError(key, size, limit)


class SQLiteCacheBackend:
    """
    SQLite-backed expiring cache.

    Design principles:
    - Expired rows are invisible to reads, purged on writes
    - Hard per-value size limit: oversize writes fail, never truncate
    - Global live-entry cap: oldest writes are evicted silently
    - put_all is one transaction: all of the batch lands or none of it
    """

    def __init__(
        self,
        db_path: str = None,
        max_value_bytes: int = MAX_VALUE_BYTES,
        max_entries: int = MAX_ENTRIES,
        max_ttl: int = MAX_TTL,
    ):
        if db_path is None:
            db_path = os.path.expanduser("~/.webstorage/cache.db")

        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.max_value_bytes = max_value_bytes
        self.max_entries = max_entries
        self.max_ttl = max_ttl

        # One connection shared across threads, serialised by _mutex
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
        self.conn.row_factory = sqlite3.Row
        self._mutex = threading.RLock()
        self.conn.executescript(SCHEMA)
        self.conn.commit()

        self.stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "evictions": 0,
            "start_time": time.time(),
        }

        logger.info(f"SQLiteCacheBackend initialized at {self.db_path}")

    def _clamp_ttl(self, ttl: int) -> int:
        return max(1, min(int(ttl), self.max_ttl))

    def get(self, key: str) -> Optional[str]:
        now = time.time()
        with self._mutex:
            row = self.conn.execute(
                "SELECT value FROM cache_entries WHERE cache_key = ? AND expires_at > ?",
                (key, now),
            ).fetchone()
            if row is None:
                self.stats["misses"] += 1
                return None
            self.stats["hits"] += 1
            return row["value"]

    def get_all(self, keys: Iterable[str]) -> Dict[str, str]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        now = time.time()
        found: Dict[str, str] = {}
        with self._mutex:
            # Stay well under SQLite's bound-parameter limit
            for start in range(0, len(keys), 500):
                chunk = keys[start:start + 500]
                placeholders = ", ".join("?" for _ in chunk)
                rows = self.conn.execute(
                    f"SELECT cache_key, value FROM cache_entries "
                    f"WHERE cache_key IN ({placeholders}) AND expires_at > ?",
                    (*chunk, now),
                ).fetchall()
                found.update((row["cache_key"], row["value"]) for row in rows)
            self.stats["hits"] += len(found)
            self.stats["misses"] += len(keys) - len(found)
        return found

    def put(self, key: str, value: str, ttl: int) -> None:
        self.put_all({key: value}, ttl)

    def put_all(self, mapping: Dict[str, str], ttl: int) -> None:
        if not mapping:
            return
        for key, value in mapping.items():
            check_value(key, value, self.max_value_bytes)

        now = time.time()
        expires_at = now + self._clamp_ttl(ttl)
        rows = [(key, value, now, expires_at) for key, value in mapping.items()]

        with self._mutex:
            try:
                with self.conn:
                    self.conn.executemany(
                        """
                        INSERT OR REPLACE INTO cache_entries
                        (cache_key, value, written_at, expires_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        rows,
                    )
                    self._enforce_capacity(now)
            except sqlite3.Error as e:
                raise BackendError(f"cache write failed: {e}") from e
            self.stats["writes"] += len(rows)

        logger.debug(f"Cached {len(rows)} entries (ttl={self._clamp_ttl(ttl)}s)")

    def _enforce_capacity(self, now: float) -> None:
        """Purge expired rows, then evict oldest writes beyond the cap."""
        self.conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (now,))
        count = self.conn.execute("SELECT COUNT(*) AS count FROM cache_entries").fetchone()["count"]
        overflow = count - self.max_entries
        if overflow > 0:
            self.conn.execute(
                """
                DELETE FROM cache_entries WHERE cache_key IN (
                    SELECT cache_key FROM cache_entries
                    ORDER BY written_at ASC, rowid ASC LIMIT ?
                )
                """,
                (overflow,),
            )
            self.stats["evictions"] += overflow
            logger.info(f"Evicted {overflow} entries (capacity {self.max_entries})")

    def remove(self, key: str) -> None:
        self.remove_all([key])

    def remove_all(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        with self._mutex:
            try:
                with self.conn:
                    self.conn.executemany(
                        "DELETE FROM cache_entries WHERE cache_key = ?",
                        [(key,) for key in keys],
                    )
            except sqlite3.Error as e:
                raise BackendError(f"cache remove failed: {e}") from e

    def get_stats(self) -> Dict[str, int]:
        """Get backend statistics."""
        with self._mutex:
            live = self.conn.execute(
                "SELECT COUNT(*) AS count FROM cache_entries WHERE expires_at > ?",
                (time.time(),),
            ).fetchone()["count"]

        return {
            "hits": self.stats["hits"],
            "misses": self.stats["misses"],
            "writes": self.stats["writes"],
            "evictions": self.stats["evictions"],
            "live_entries": live,
            "max_entries": self.max_entries,
            "uptime_seconds": int(time.time() - self.stats["start_time"]),
        }

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            logger.info("SQLiteCacheBackend closed")


# ── Module-level singleton ──
_cache_instance = None


def build_cache(config=None) -> CacheBackend:
    """Construct the backend named by the configuration."""
    from .config import load_config

    config = config or load_config()
    if config.backend == "remote":
        from .remote import RemoteCacheBackend

        return RemoteCacheBackend(
            base_url=config.remote.base_url,
            timeout=config.remote.timeout_sec,
        )
    return SQLiteCacheBackend(str(config.db_path))


def get_cache() -> CacheBackend:
    """Get or create the process-wide cache handle."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = build_cache()
    return _cache_instance


def set_cache(cache: Optional[CacheBackend]) -> None:
    """Install a specific backend as the process-wide handle."""
    global _cache_instance
    _cache_instance = cache


def reset_cache() -> None:
    set_cache(None)
