#!/usr/bin/env python3
"""
webstorage operator commands

Usage:
    python -m webstorage.cli refresh              # unconditional local refresh
    python -m webstorage.cli install              # register the 5-hourly trigger
    python -m webstorage.cli uninstall            # remove it
    python -m webstorage.cli run-scheduler        # fire stored jobs until interrupted
    python -m webstorage.cli dump session|local   # print entries as JSON
    python -m webstorage.cli stats                # backend statistics
"""

import json
import logging
import sys

from . import api
from .errors import StorageError
from .scheduler import build_worker, jobs_db_path

logger = logging.getLogger(__name__)

USAGE = "usage: webstorage {refresh|install|uninstall|run-scheduler|dump <session|local>|stats}"


def _dump(which: str) -> int:
    if which == "session":
        namespace = api.get_session_storage()
    elif which == "local":
        namespace = api.get_local_storage()
    else:
        print(USAGE, file=sys.stderr)
        return 2
    print(json.dumps(dict(namespace.entries()), indent=2, ensure_ascii=False))
    return 0


def run(argv) -> int:
    if not argv:
        print(USAGE, file=sys.stderr)
        return 2

    command, args = argv[0], argv[1:]

    if command == "refresh":
        ran = api.refresh_local_storage_cache()
        print("refreshed" if ran else "nothing to refresh")
        return 0

    if command == "install":
        job_id = api.install_local_storage_trigger()
        print(job_id or "already installed")
        return 0

    if command == "uninstall":
        removed = api.uninstall_local_storage_trigger()
        print("removed" if removed else "not installed")
        return 0

    if command == "run-scheduler":
        worker = build_worker(jobs_db_path())
        logger.info("Scheduler worker starting")
        worker.start()
        return 0

    if command == "dump" and len(args) == 1:
        return _dump(args[0])

    if command == "stats":
        cache = api.get_local_storage().cache
        stats = cache.get_stats() if hasattr(cache, "get_stats") else {}
        print(json.dumps(stats, indent=2))
        return 0

    print(USAGE, file=sys.stderr)
    return 2


def main() -> int:
    """Entry point for the console script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    try:
        return run(sys.argv[1:])
    except StorageError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
