"""
webstorage: Web Storage style session/local namespaces over an expiring cache

Provides:
- StorageNamespace: get/set/remove/clear/enumerate over one key prefix
- KeepAliveManager: debounced refresh + scheduled backstop for local storage
- SQLiteCacheBackend / RemoteCacheBackend: the shared cache underneath
- api: lazily wired session/local storage and the refresh entry point
"""

from .backend import CacheBackend, SQLiteCacheBackend, get_cache
from .remote import RemoteCacheBackend
from .locking import SQLiteLock, ThreadLock, get_lock, hold, with_lock
from .scheduler import APJobScheduler, ScheduledJob, register_entry_point
from .namespace import StorageNamespace
from .keepalive import KeepAliveManager
from .errors import (
    StorageError, BackendError, ValueTooLargeError, StorageWriteError,
    LockTimeoutError, CorruptIndexError, UnknownEntryPointError,
)
from .api import (
    get_session_storage, get_local_storage,
    install_local_storage_trigger, uninstall_local_storage_trigger,
    refresh_local_storage_cache,
)

__all__ = [
    'CacheBackend', 'SQLiteCacheBackend', 'RemoteCacheBackend', 'get_cache',
    'SQLiteLock', 'ThreadLock', 'get_lock', 'hold', 'with_lock',
    'APJobScheduler', 'ScheduledJob', 'register_entry_point',
    'StorageNamespace', 'KeepAliveManager',
    'StorageError', 'BackendError', 'ValueTooLargeError', 'StorageWriteError',
    'LockTimeoutError', 'CorruptIndexError', 'UnknownEntryPointError',
    'get_session_storage', 'get_local_storage',
    'install_local_storage_trigger', 'uninstall_local_storage_trigger',
    'refresh_local_storage_cache',
]
