# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from notice_relay.cli.bootstrap import create_initial_state
from notice_relay.core.state import AppState

from .fakes import FakeHttp


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the FastAPI app.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="notice-relay-test",
        data_dir=tmp_path,
        tasks_snapshot_path=tmp_path / "tasks.json",
        poll_interval_seconds=0.05,
        api_timeout_seconds=1.0,
        default_interval_ms=50,
        default_total_executions=3,
        task_retention_seconds=0.0,
        max_connections_per_ip=5,
        origin_check_enabled=False,
        allowed_origins=[],
        webhook_url="http://relay.test/webhook",
        webhook_path="/webhook",
    )


@pytest.fixture()
def http() -> FakeHttp:
    return FakeHttp(default={"ok": True})


@pytest.fixture()
def state(settings: SimpleNamespace, http: FakeHttp) -> AppState:
    """
    AppState wired with a scripted HTTP client.

    NOTE: the TaskStore is real (snapshots go to tmp_path) because its
    persistence is part of what we want to test.
    """
    return create_initial_state(settings=settings, http=http)
