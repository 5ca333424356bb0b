"""
Keep-alive for the "local" namespace.

Cache entries die after their TTL, so anything meant to outlive a session has
to be re-written before then. Two paths do that, both through ``refresh``:

- every read of the namespace calls ``refresh(debounce=True)``, which runs at
  most once per debounce window;
- a recurring scheduler job calls ``refresh(debounce=False)`` as a backstop
  for stretches with no reads at all.

A refresh re-puts the index, every value still present, the trigger id and a
new last-refresh stamp in one ``put_all`` so they all get the same fresh TTL.
Values that were already evicted are not resurrected.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Dict, Optional

from .errors import LockTimeoutError
from .locking import hold
from .namespace import StorageNamespace
from .observability import RefreshLogRecord
from .scheduler import JobScheduler, get_scheduler

logger = logging.getLogger(__name__)

DEBOUNCE_WINDOW = 3600  # 1 hour
TRIGGER_PERIOD_HOURS = 5
REFRESH_FN = "refresh_local_storage_cache"


class KeepAliveManager:
    def __init__(
        self,
        namespace: StorageNamespace,
        scheduler: Optional[JobScheduler] = None,
        debounce_window: int = DEBOUNCE_WINDOW,
        trigger_period_hours: float = TRIGGER_PERIOD_HOURS,
        function_name: str = REFRESH_FN,
    ) -> None:
        self.namespace = namespace
        self._scheduler = scheduler
        self.debounce_window = debounce_window
        self.trigger_period_hours = trigger_period_hours
        self.function_name = function_name
        self.trigger_id_key = f"{namespace.prefix}trigger_id__"
        self.last_refresh_key = f"{namespace.prefix}last_refresh__"

    @property
    def scheduler(self) -> JobScheduler:
        if self._scheduler is None:
            self._scheduler = get_scheduler()
        return self._scheduler

    @property
    def trigger_id(self) -> Optional[str]:
        return self.namespace.cache.get(self.trigger_id_key)

    @property
    def last_refresh(self) -> Optional[int]:
        raw = self.namespace.cache.get(self.last_refresh_key)
        try:
            return int(float(raw)) if raw else None
        except ValueError:
            return None

    # ── Refresh ──────────────────────────────────────────────────

    def refresh(self, debounce: bool = False) -> bool:
        """Re-put every live entry with a fresh TTL.

        Runs under the namespace lock so a concurrent ``set_item`` cannot be
        overwritten by a stale index. The debounced path only tries the lock
        and gives up on contention; reads never wait on writers.

        Returns True if the batch write ran, False if debounced, contended or empty.
        """
        if debounce:
            last = self.last_refresh
            if last is not None and time.time() - last < self.debounce_window:
                self._log(debounce, "debounced")
                return False

        timeout_ms = 0 if debounce else self.namespace.lock_timeout_ms
        try:
            with hold(self.namespace.lock, timeout_ms):
                return self._rewrite(debounce)
        except LockTimeoutError:
            if not debounce:
                raise
            self._log(debounce, "contended")
            return False

    def _rewrite(self, debounce: bool) -> bool:
        cache = self.namespace.cache

        index = self.namespace.read_index()
        if not index:
            self._log(debounce, "empty")
            return False

        prefixed_keys = [self.namespace.prefixed(k) for k in index]
        values = cache.get_all(prefixed_keys)

        batch: Dict[str, str] = {self.namespace.index_key: json.dumps(index)}
        for pk in prefixed_keys:
            if values.get(pk) is not None:
                batch[pk] = values[pk]

        trigger_id = cache.get(self.trigger_id_key)
        if trigger_id:
            batch[self.trigger_id_key] = trigger_id
        batch[self.last_refresh_key] = str(int(time.time()))

        cache.put_all(batch, self.namespace.ttl)

        self._log(
            debounce,
            "refreshed",
            entries_written=len(batch),
            values_missing=sum(1 for pk in prefixed_keys if pk not in batch),
            trigger_id=trigger_id,
        )
        return True

    def on_read(self, key: str, value: Optional[str]) -> None:
        """Post-read hook for the namespace: opportunistic, debounced refresh."""
        self.refresh(debounce=True)

    def _log(self, debounce: bool, outcome: str, **fields) -> None:
        record = RefreshLogRecord(
            namespace=self.namespace.prefix, debounce=debounce, outcome=outcome, **fields
        ).to_dict()
        if outcome == "refreshed":
            logger.info(
                f"Refreshed {record['entries_written']} entries in "
                f"{record['namespace']!r} ({record['values_missing']} already evicted)"
            )
        logger.debug(f"refresh {json.dumps(record)}")

    # ── Trigger lifecycle ────────────────────────────────────────

    def install(self) -> Optional[str]:
        """Register the recurring refresh job unless a live one is recorded.

        Returns the new job id, or None when the existing job is still live.
        """
        cache = self.namespace.cache
        with hold(self.namespace.lock, self.namespace.lock_timeout_ms):
            stored_id = cache.get(self.trigger_id_key)
            if stored_id:
                still_exists = any(job.job_id == stored_id for job in self.scheduler.list_jobs())
                if still_exists:
                    logger.info(f"{self.namespace.prefix!r} refresh trigger already installed ({stored_id})")
                    return None

            job_id = self.scheduler.create_recurring(self.function_name, self.trigger_period_hours)
            cache.put(self.trigger_id_key, job_id, self.namespace.ttl)

        logger.info(f"{self.namespace.prefix!r} refresh trigger installed ({job_id})")
        return job_id

    def uninstall(self) -> bool:
        """Cancel the recorded job. Returns False if nothing was recorded."""
        cache = self.namespace.cache
        stored_id = cache.get(self.trigger_id_key)
        if not stored_id:
            return False

        for job in self.scheduler.list_jobs():
            if job.job_id == stored_id:
                self.scheduler.cancel(job.job_id)

        cache.remove(self.trigger_id_key)
        logger.info(f"{self.namespace.prefix!r} refresh trigger removed.")
        return True
