#!/usr/bin/env python3
"""
Unit tests for the SQLite cache backend
TTL expiry, size limit, shared-capacity eviction, batch atomicity
"""

import pytest
import time
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from webstorage import backend as backend_module
from webstorage.backend import SQLiteCacheBackend, CacheBackend, MAX_VALUE_BYTES
from webstorage.errors import BackendError, ValueTooLargeError


@pytest.fixture
def cache(tmp_path):
    """Create temporary cache for testing."""
    c = SQLiteCacheBackend(str(tmp_path / "cache.db"))
    yield c
    c.close()


class TestReadWrite:

    def test_put_and_get(self, cache):
        cache.put("ss__a", "1", 60)
        assert cache.get("ss__a") == "1"

    def test_missing_key_is_none(self, cache):
        assert cache.get("nope") is None

    def test_put_overwrites(self, cache):
        cache.put("k", "old", 60)
        cache.put("k", "new", 60)
        assert cache.get("k") == "new"

    def test_get_all_returns_only_present(self, cache):
        cache.put_all({"a": "1", "b": "2"}, 60)
        assert cache.get_all(["a", "b", "c"]) == {"a": "1", "b": "2"}

    def test_get_all_empty(self, cache):
        assert cache.get_all([]) == {}

    def test_remove_and_remove_all(self, cache):
        cache.put_all({"a": "1", "b": "2", "c": "3"}, 60)
        cache.remove("a")
        cache.remove_all(["b", "missing"])
        assert cache.get_all(["a", "b", "c"]) == {"c": "3"}

    def test_satisfies_protocol(self, cache):
        assert isinstance(cache, CacheBackend)

    def test_non_string_value_rejected(self, cache):
        with pytest.raises(BackendError):
            cache.put("k", 42, 60)


class TestExpiry:

    def test_entry_expires_after_ttl(self, cache, monkeypatch):
        cache.put("k", "v", 10)
        assert cache.get("k") == "v"

        future = time.time() + 11
        monkeypatch.setattr("time.time", lambda: future)
        assert cache.get("k") is None
        assert cache.get_all(["k"]) == {}

    def test_ttl_clamped_to_ceiling(self, tmp_path, monkeypatch):
        c = SQLiteCacheBackend(str(tmp_path / "c.db"), max_ttl=100)
        c.put("k", "v", 10_000)

        future = time.time() + 101
        monkeypatch.setattr("time.time", lambda: future)
        assert c.get("k") is None
        c.close()

    def test_put_all_shares_one_ttl(self, cache, monkeypatch):
        cache.put("old", "x", 5)
        cache.put_all({"a": "1", "b": "2"}, 100)

        future = time.time() + 50
        monkeypatch.setattr("time.time", lambda: future)
        assert cache.get_all(["old", "a", "b"]) == {"a": "1", "b": "2"}


class TestLimits:

    def test_oversize_value_rejected(self, cache):
        big = "x" * (MAX_VALUE_BYTES + 1)
        with pytest.raises(ValueTooLargeError) as exc:
            cache.put("ss__big", big, 60)
        assert exc.value.cache_key == "ss__big"
        assert cache.get("ss__big") is None

    def test_value_at_limit_accepted(self, cache):
        cache.put("edge", "x" * MAX_VALUE_BYTES, 60)
        assert len(cache.get("edge")) == MAX_VALUE_BYTES

    def test_size_counts_utf8_bytes(self, tmp_path):
        c = SQLiteCacheBackend(str(tmp_path / "c.db"), max_value_bytes=4)
        with pytest.raises(ValueTooLargeError):
            c.put("k", "ééé", 60)  # 6 bytes
        c.close()

    def test_oversize_batch_writes_nothing(self, cache):
        with pytest.raises(ValueTooLargeError):
            cache.put_all({"ok": "1", "big": "x" * (MAX_VALUE_BYTES + 1)}, 60)
        assert cache.get("ok") is None

    def test_capacity_evicts_oldest_writes(self, tmp_path):
        c = SQLiteCacheBackend(str(tmp_path / "c.db"), max_entries=3)
        for i in range(5):
            c.put(f"k{i}", str(i), 60)

        assert c.get_all([f"k{i}" for i in range(5)]) == {"k2": "2", "k3": "3", "k4": "4"}
        stats = c.get_stats()
        assert stats["evictions"] == 2
        assert stats["live_entries"] == 3
        c.close()


class TestStats:

    def test_hits_misses_writes(self, cache):
        cache.put("a", "1", 60)
        cache.get("a")
        cache.get("b")
        stats = cache.get_stats()
        assert stats["writes"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1


class TestSingleton:

    def test_get_cache_is_lazy_and_reused(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WEBSTORAGE_DB_PATH", str(tmp_path / "shared.db"))
        monkeypatch.setenv("WEBSTORAGE_CONFIG", str(tmp_path / "absent.yml"))
        backend_module.reset_cache()
        try:
            first = backend_module.get_cache()
            assert isinstance(first, SQLiteCacheBackend)
            assert first.db_path == str(tmp_path / "shared.db")
            assert backend_module.get_cache() is first
        finally:
            backend_module.reset_cache()
