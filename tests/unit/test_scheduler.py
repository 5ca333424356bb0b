#!/usr/bin/env python3
"""
Unit tests for the recurring job scheduler and entry-point registry
"""

import pytest
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from webstorage.scheduler import (
    APJobScheduler, JobScheduler, ENTRY_POINT_REF,
    build_jobstore, build_worker, jobs_db_path,
    register_entry_point, resolve_entry_point, registered_entry_points, run_entry_point,
)
from webstorage.config import StorageConfig
from webstorage.errors import UnknownEntryPointError


@pytest.fixture
def scheduler(tmp_path):
    s = APJobScheduler(str(tmp_path / "jobs.db"))
    yield s
    s.close()


calls = []
fired = threading.Event()


@register_entry_point("test_job_counter")
def _counter():
    calls.append(time.time())
    fired.set()
    return len(calls)


@register_entry_point("test_job_broken")
def _broken():
    raise RuntimeError("job exploded")


class TestRegistry:

    def test_resolve_registered(self):
        assert resolve_entry_point("test_job_counter") is _counter
        assert "test_job_counter" in registered_entry_points()

    def test_unknown_name(self):
        with pytest.raises(UnknownEntryPointError):
            resolve_entry_point("no_such_function")

    def test_unknown_is_key_error(self):
        with pytest.raises(KeyError):
            resolve_entry_point("no_such_function")

    def test_refresh_entry_point_registered_on_import(self):
        import webstorage  # noqa: F401
        assert "refresh_local_storage_cache" in registered_entry_points()


class TestRunEntryPoint:

    def test_calls_registered_function(self):
        calls.clear()
        assert run_entry_point("test_job_counter") == 1
        assert len(calls) == 1

    def test_failure_logged_not_raised(self, caplog):
        assert run_entry_point("test_job_broken") is None
        assert "job exploded" in caplog.text

    def test_unregistered_name_logged(self, caplog):
        assert run_entry_point("not_registered_anywhere") is None
        assert "not_registered_anywhere" in caplog.text


class TestJobs:

    def test_create_and_list(self, scheduler):
        job_id = scheduler.create_recurring("test_job_counter", 5)
        jobs = scheduler.list_jobs()
        assert [j.job_id for j in jobs] == [job_id]
        assert jobs[0].function_name == "test_job_counter"
        assert jobs[0].period_hours == 5

    def test_first_run_one_period_out(self, scheduler):
        before = time.time()
        job_id = scheduler.create_recurring("test_job_counter", 5)
        job = scheduler.get_job(job_id)
        assert job.next_run_at >= before + 5 * 3600 - 1
        assert job.next_run_at <= time.time() + 5 * 3600 + 1

    def test_jobs_point_at_entry_point_runner(self, scheduler):
        job_id = scheduler.create_recurring("test_job_counter", 1)
        job = scheduler._scheduler.get_job(job_id)
        assert job.func_ref == ENTRY_POINT_REF
        assert job.args == ("test_job_counter",)

    def test_cancel(self, scheduler):
        keep = scheduler.create_recurring("test_job_counter", 1)
        drop = scheduler.create_recurring("test_job_counter", 1)
        scheduler.cancel(drop)
        assert [j.job_id for j in scheduler.list_jobs()] == [keep]
        assert scheduler.get_job(drop) is None

    def test_cancel_unknown_is_noop(self, scheduler):
        scheduler.cancel("missing")
        assert scheduler.list_jobs() == []

    def test_rejects_non_positive_period(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.create_recurring("test_job_counter", 0)

    def test_satisfies_protocol(self, scheduler):
        assert isinstance(scheduler, JobScheduler)

    def test_jobs_survive_restart(self, tmp_path):
        first = APJobScheduler(str(tmp_path / "jobs.db"))
        job_id = first.create_recurring("test_job_counter", 5)
        first.close()

        second = APJobScheduler(str(tmp_path / "jobs.db"))
        try:
            assert [j.job_id for j in second.list_jobs()] == [job_id]
        finally:
            second.close()

    def test_memory_store(self):
        s = APJobScheduler(":memory:")
        try:
            job_id = s.create_recurring("test_job_counter", 1)
            assert [j.job_id for j in s.list_jobs()] == [job_id]
        finally:
            s.close()


class TestWorker:

    def test_build_worker_is_blocking(self, tmp_path):
        assert isinstance(build_worker(str(tmp_path / "jobs.db")), BlockingScheduler)

    def test_jobs_db_path_next_to_cache(self, tmp_path):
        config = StorageConfig.from_dict({"db_path": str(tmp_path / "cache.db")})
        assert jobs_db_path(config) == str(tmp_path / "cache.db") + ".jobs"

    def test_jobs_db_path_in_memory(self):
        config = StorageConfig.from_dict({"db_path": ":memory:"})
        assert jobs_db_path(config) == ":memory:"

    def test_worker_fires_stored_job(self, scheduler, tmp_path):
        calls.clear()
        fired.clear()
        job_id = scheduler.create_recurring("test_job_counter", 5)

        worker = BackgroundScheduler(
            jobstores={"default": build_jobstore(str(tmp_path / "jobs.db"))},
            timezone="UTC",
        )
        worker.start()
        try:
            worker.modify_job(job_id, next_run_time=datetime.now(timezone.utc))
            assert fired.wait(timeout=10)
        finally:
            worker.shutdown(wait=True)

        assert len(calls) == 1
