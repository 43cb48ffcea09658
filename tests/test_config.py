# tests/test_config.py

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

from notice_relay.cli.main import _ssl_kwargs
from notice_relay.config import Settings
from notice_relay.logging_setup import setup_logging

_VARS = (
    "NOTICE_SERVER_URL",
    "SERVER_URL",
    "NOTICE_WEBHOOK_PATH",
    "NOTICE_PORT",
    "NOTICE_DATA_DIR",
    "NOTICE_TASKS_SNAPSHOT_PATH",
    "NOTICE_ALLOWED_ORIGINS",
    "NOTICE_MAX_CONNECTIONS_PER_IP",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    s = Settings.from_env()
    assert s.port == 8443
    assert s.max_connections_per_ip == 5
    assert s.api_timeout_seconds == 5.0
    assert s.webhook_url == "http://localhost:8443/webhook"
    assert s.tasks_snapshot_path == s.data_dir / "tasks.json"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SERVER_URL", "https://relay.example.com/")
    monkeypatch.setenv("NOTICE_WEBHOOK_PATH", "hooks/in")
    monkeypatch.setenv("NOTICE_PORT", "not-a-number")
    monkeypatch.setenv("NOTICE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("NOTICE_ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com")
    monkeypatch.setenv("NOTICE_MAX_CONNECTIONS_PER_IP", "2")

    s = Settings.from_env()

    assert s.webhook_url == "https://relay.example.com/hooks/in"
    assert s.port == 8443
    assert s.tasks_snapshot_path == tmp_path / "tasks.json"
    assert s.allowed_origins == ["https://a.example.com", "https://b.example.com"]
    assert s.max_connections_per_ip == 2

    # the prefixed name wins over the bare one
    monkeypatch.setenv("NOTICE_SERVER_URL", "https://other.example.com")
    assert Settings.from_env().webhook_url == "https://other.example.com/hooks/in"


def test_tls_material_is_optional_but_must_exist_when_set(tmp_path: Path) -> None:
    assert _ssl_kwargs(SimpleNamespace(ssl_certfile=None, ssl_keyfile=None)) == {}

    cert = tmp_path / "cert.pem"
    key = tmp_path / "key.pem"
    cert.write_text("c", "utf-8")

    with pytest.raises(RuntimeError):
        _ssl_kwargs(SimpleNamespace(ssl_certfile=cert, ssl_keyfile=None))
    with pytest.raises(RuntimeError):
        _ssl_kwargs(SimpleNamespace(ssl_certfile=cert, ssl_keyfile=key))

    key.write_text("k", "utf-8")
    assert _ssl_kwargs(SimpleNamespace(ssl_certfile=cert, ssl_keyfile=key)) == {
        "ssl_certfile": str(cert),
        "ssl_keyfile": str(key),
    }


def test_setup_logging_writes_project_logs_to_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(log_dir=tmp_path / "logs", console_level=logging.WARNING)
        logging.getLogger("notice_relay.test").info("hello from the relay")
        for h in root.handlers:
            h.flush()

        assert "hello from the relay" in (tmp_path / "logs" / "notice_relay.log").read_text("utf-8")
        assert logging.getLogger("uvicorn.access").propagate
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
