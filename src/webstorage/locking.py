"""Named mutual-exclusion locks with bounded waits."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
import uuid
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Protocol, TypeVar, runtime_checkable

from .errors import LockTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_MS = 5000

LOCK_SCHEMA = """
CREATE TABLE IF NOT EXISTS locks (
    name TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
"""


@runtime_checkable
class LockBackend(Protocol):
    name: str

    def acquire(self, timeout_ms: int) -> Any: ...

    def release(self, handle: Any) -> None: ...


class ThreadLock:
    """In-process lock. Enough when every caller shares one interpreter."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def acquire(self, timeout_ms: int) -> threading.Lock:
        if not self._lock.acquire(timeout=max(timeout_ms, 0) / 1000.0):
            raise LockTimeoutError(self.name, timeout_ms)
        return self._lock

    def release(self, handle: threading.Lock) -> None:
        handle.release()


class SQLiteLock:
    """
    Cross-process named lock kept in a SQLite table.

    A holder owns the row until it releases it or its lease runs out, so a
    crashed process cannot wedge the lock forever.
    """

    def __init__(
        self,
        db_path: str,
        name: str,
        lease_sec: float = 30.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.db_path = str(db_path)
        self.name = name
        self.lease_sec = lease_sec
        self.poll_interval = poll_interval

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.executescript(LOCK_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly
        return sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None)

    def _try_acquire(self, owner: str) -> bool:
        now = time.time()
        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    "DELETE FROM locks WHERE name = ? AND expires_at <= ?",
                    (self.name, now),
                )
                cursor = conn.execute(
                    """INSERT OR IGNORE INTO locks (name, owner, acquired_at, expires_at)
                       VALUES (?, ?, ?, ?)""",
                    (self.name, owner, now, now + self.lease_sec),
                )
                acquired = cursor.rowcount == 1
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return acquired

    def acquire(self, timeout_ms: int) -> str:
        owner = uuid.uuid4().hex
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000.0
        while True:
            if self._try_acquire(owner):
                return owner
            if time.monotonic() >= deadline:
                raise LockTimeoutError(self.name, timeout_ms)
            time.sleep(self.poll_interval)

    def release(self, handle: str) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                "DELETE FROM locks WHERE name = ? AND owner = ?",
                (self.name, handle),
            )

    def holder(self) -> str | None:
        """Owner token of the current live holder, if any."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT owner FROM locks WHERE name = ? AND expires_at > ?",
                (self.name, time.time()),
            ).fetchone()
        return row[0] if row else None


@contextmanager
def hold(lock: LockBackend, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Iterator[Any]:
    """Hold ``lock`` for the body of a ``with`` block; released on every exit path."""
    handle = lock.acquire(timeout_ms)
    try:
        yield handle
    finally:
        lock.release(handle)


def with_lock(lock: LockBackend, fn: Callable[[], T], timeout_ms: int = DEFAULT_TIMEOUT_MS) -> T:
    with hold(lock, timeout_ms):
        return fn()


# ── Module-level registry ──
_locks: Dict[str, LockBackend] = {}
_locks_guard = threading.Lock()


def build_lock(name: str, config=None) -> LockBackend:
    from .config import load_config

    config = config or load_config()
    if config.backend == "remote":
        # No shared lock service next to the remote cache; serialise in-process
        logger.warning(f"Using in-process lock for {name!r} with remote backend")
        return ThreadLock(name)
    db_path = os.fspath(config.db_path)
    if db_path == ":memory:":
        # Nothing to share across processes
        return ThreadLock(name)
    lock_db = db_path + ".locks"
    return SQLiteLock(lock_db, name, lease_sec=config.lock_lease_sec)


def get_lock(name: str) -> LockBackend:
    """Get or create the process-wide lock registered under ``name``."""
    with _locks_guard:
        if name not in _locks:
            _locks[name] = build_lock(name)
        return _locks[name]


def reset_locks() -> None:
    with _locks_guard:
        _locks.clear()
