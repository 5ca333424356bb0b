"""Exception taxonomy for the storage layer."""

from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base class for every error raised by webstorage."""


class BackendError(StorageError):
    """A cache backend call failed."""


class ValueTooLargeError(BackendError):
    def __init__(self, cache_key: str, size: int, limit: int) -> None:
        self.cache_key = cache_key
        self.size = size
        self.limit = limit
        super().__init__(
            f"value for {cache_key!r} is {size} bytes (limit {limit} bytes)"
        )


class StorageWriteError(StorageError):
    """A value or index write was rejected by the backend."""

    def __init__(self, key: str, original: Optional[BaseException] = None) -> None:
        self.key = key
        self.original = original
        detail = str(original) if original is not None else "unknown error"
        super().__init__(
            f'Failed to cache key "{key}". '
            f"Value may exceed the 100KB cache limit. "
            f"Original error: {detail}"
        )


class LockTimeoutError(StorageError):
    def __init__(self, name: str, timeout_ms: int) -> None:
        self.name = name
        self.timeout_ms = timeout_ms
        super().__init__(f"could not acquire lock {name!r} within {timeout_ms}ms")


class CorruptIndexError(StorageError):
    def __init__(self, index_key: str, raw: str) -> None:
        self.index_key = index_key
        self.raw = raw
        super().__init__(f"index entry {index_key!r} is not a JSON list: {raw[:80]!r}")


class UnknownEntryPointError(StorageError, KeyError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"no entry point registered as {name!r}")

    def __str__(self) -> str:
        return self.args[0]
