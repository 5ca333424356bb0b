#!/usr/bin/env python3
"""
Job Scheduler: recurring time-based jobs that call named entry points

Thin adapter over APScheduler plus an in-process registry of callables. A job
only stores the *name* of the function it runs; the name is resolved against
the registry each time the job fires, so the host never wraps the function.

Jobs are kept in an APScheduler job store (SQLite through SQLAlchemy), so a
process that installs a job and the worker that runs it need not be the same.
The adapter's own scheduler is started paused: it records jobs, it never fires
them. ``run-scheduler`` starts a blocking worker on the same store.

Usage:
    @register_entry_point("refresh_local_storage_cache")
    def refresh(): ...

    scheduler = APJobScheduler("/tmp/jobs.db")
    job_id = scheduler.create_recurring("refresh_local_storage_cache", 5)
"""

import logging
import os
import uuid
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from apscheduler.jobstores.base import BaseJobStore, JobLookupError  # type: ignore[import-untyped]
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore[import-untyped]
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore  # type: ignore[import-untyped]
from apscheduler.schedulers.background import BackgroundScheduler  # type: ignore[import-untyped]
from apscheduler.schedulers.blocking import BlockingScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from .errors import UnknownEntryPointError

logger = logging.getLogger(__name__)

JOBS_TABLE = "webstorage_jobs"
ENTRY_POINT_REF = f"{__name__}:run_entry_point"
MISFIRE_GRACE_SEC = 3600


# ── Entry-point registry ─────────────────────────────────────────

_entry_points: Dict[str, Callable[[], Any]] = {}


def register_entry_point(name: str) -> Callable[[Callable[[], Any]], Callable[[], Any]]:
    """Decorator: make ``fn`` resolvable by the scheduler under ``name``."""

    def decorator(fn: Callable[[], Any]) -> Callable[[], Any]:
        _entry_points[name] = fn
        return fn

    return decorator


def resolve_entry_point(name: str) -> Callable[[], Any]:
    try:
        return _entry_points[name]
    except KeyError:
        raise UnknownEntryPointError(name) from None


def registered_entry_points() -> List[str]:
    return sorted(_entry_points)


def run_entry_point(name: str) -> Any:
    """What every stored job calls. Failures are logged so the worker keeps going."""
    logger.info(f"Running scheduled entry point {name}")
    try:
        return resolve_entry_point(name)()
    except Exception as e:
        logger.error(f"Scheduled entry point {name} failed: {e}", exc_info=True)
        return None


# ── Jobs ─────────────────────────────────────────────────────────

@dataclass
class ScheduledJob:
    """A recurring job as reported by the scheduler."""
    job_id: str
    function_name: str
    period_hours: float
    next_run_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@runtime_checkable
class JobScheduler(Protocol):

    def create_recurring(self, function_name: str, period_hours: float) -> str: ...

    def list_jobs(self) -> List[ScheduledJob]: ...

    def cancel(self, job_id: str) -> None: ...


def build_jobstore(db_path: Optional[str] = None) -> BaseJobStore:
    """SQLite job store at ``db_path``; ``":memory:"`` keeps jobs in-process only."""
    if db_path is None:
        db_path = os.path.expanduser("~/.webstorage/jobs.db")
    db_path = str(db_path)
    if db_path == ":memory:":
        return MemoryJobStore()
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return SQLAlchemyJobStore(url=f"sqlite:///{db_path}", tablename=JOBS_TABLE)


class APJobScheduler:
    """
    Recurring-job registry backed by an APScheduler job store.

    Jobs survive process restarts when the store is a file. Firing is the
    worker's business (see build_worker); this side only adds, lists and
    removes jobs.
    """

    def __init__(self, db_path: str = None, jobstore: Optional[BaseJobStore] = None):
        self.db_path = str(db_path) if db_path is not None else None
        self._scheduler = BackgroundScheduler(
            jobstores={"default": jobstore or build_jobstore(db_path)},
            timezone="UTC",
        )
        # Paused: jobs are written to the store but never run from here
        self._scheduler.start(paused=True)
        logger.info(f"APJobScheduler initialized (db={self.db_path})")

    def close(self):
        """Shut down the scheduler and release the job store."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def create_recurring(self, function_name: str, period_hours: float) -> str:
        if period_hours <= 0:
            raise ValueError(f"period_hours must be positive, got {period_hours}")
        job = self._scheduler.add_job(
            ENTRY_POINT_REF,
            trigger=IntervalTrigger(hours=period_hours, timezone="UTC"),
            args=[function_name],
            id=uuid.uuid4().hex,
            name=function_name,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=MISFIRE_GRACE_SEC,
        )
        logger.info(f"Scheduled {function_name} every {period_hours}h (job={job.id})")
        return job.id

    def list_jobs(self) -> List[ScheduledJob]:
        return [self._to_job(job) for job in self._scheduler.get_jobs()]

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        job = self._scheduler.get_job(job_id)
        return self._to_job(job) if job else None

    def cancel(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug(f"Job {job_id} already gone")
            return
        logger.info(f"Cancelled job {job_id}")

    @staticmethod
    def _to_job(job) -> ScheduledJob:
        next_run = job.next_run_time
        return ScheduledJob(
            job_id=job.id,
            function_name=job.args[0] if job.args else job.name,
            period_hours=job.trigger.interval.total_seconds() / 3600,
            next_run_at=next_run.timestamp() if next_run else None,
        )


def build_worker(db_path: str) -> BlockingScheduler:
    """Blocking scheduler that fires the jobs stored at ``db_path``."""
    return BlockingScheduler(
        jobstores={"default": build_jobstore(db_path)},
        timezone="UTC",
    )


def jobs_db_path(config=None) -> str:
    """Job store location: next to the cache database."""
    from .config import load_config

    config = config or load_config()
    db_path = os.fspath(config.db_path)
    return db_path if db_path == ":memory:" else db_path + ".jobs"


# ── Module-level singleton ──
_scheduler_instance = None


def get_scheduler() -> JobScheduler:
    """Get or create the process-wide scheduler, next to the cache database."""
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = APJobScheduler(jobs_db_path())
    return _scheduler_instance


def set_scheduler(scheduler: Optional[JobScheduler]) -> None:
    global _scheduler_instance
    _scheduler_instance = scheduler
