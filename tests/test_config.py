from pathlib import Path

import pytest

from webstorage.config import StorageConfig, load_config


def test_load_config_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("ttl_sec: 600", encoding="utf-8")

    cfg = load_config(path)

    assert isinstance(cfg, StorageConfig)
    assert cfg.ttl_sec == 600
    assert cfg.debounce_window_sec == 3600
    assert cfg.lock_timeout_ms == 5000
    assert cfg.trigger_period_hours == 5
    assert cfg.session_prefix == "ss__"
    assert cfg.local_prefix == "ls__"
    assert cfg.backend == "sqlite"


def test_env_overrides(monkeypatch, tmp_path):
    source = tmp_path / "config.yml"
    source.write_text("backend: sqlite\nremote:\n  base_url: http://a\n", encoding="utf-8")

    monkeypatch.setenv("WEBSTORAGE_LOCK_TIMEOUT_MS", "250")
    monkeypatch.setenv("WEBSTORAGE_REMOTE_URL", "http://cache:9000")
    monkeypatch.setenv("WEBSTORAGE_REMOTE_TIMEOUT_SEC", "3")

    cfg = load_config(source)

    assert cfg.lock_timeout_ms == 250
    assert cfg.remote.base_url == "http://cache:9000"
    assert cfg.remote.timeout_sec == 3


def test_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")


def test_builtin_defaults_without_file(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBSTORAGE_CONFIG", str(tmp_path / "absent.yml"))
    monkeypatch.setenv("WEBSTORAGE_DB_PATH", str(tmp_path / "c.db"))

    cfg = load_config()

    assert cfg.db_path == tmp_path / "c.db"
    assert cfg.ttl_sec == 21600


def test_shipped_defaults_file_loads():
    path = Path(__file__).parent.parent / "config" / "storage.defaults.yml"
    cfg = load_config(path)
    assert cfg.ttl_sec == 21600
    assert cfg.debounce_window_sec == 3600


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        StorageConfig.from_dict({"backend": "memcached"})
