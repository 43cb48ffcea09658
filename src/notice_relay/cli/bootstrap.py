# src/notice_relay/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, registries, outbound HTTP client, engine and webhook
  ingestor into AppState, each with its own lifetime (no module singletons).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.admission import AdmissionControl
from ..connectors.connection_registry import ConnectionRegistry
from ..connectors.http_client import HttpxOutbound
from ..core.ports import OutboundHttp
from ..core.state import AppState
from ..tasks.streams import StreamRegistry
from ..tasks.subscriptions import SubscriptionIndex
from ..tasks.task_engine import TaskEngine
from ..tasks.task_store import TaskStore
from ..tasks.webhook import WebhookIngestor

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_snapshot_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, http: OutboundHttp | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the HTTP client) injectable makes the app easier to
    test and avoids hidden global config reads. If settings is None, falls
    back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if http is None:
        http = HttpxOutbound(default_timeout=settings.api_timeout_seconds)

    store = TaskStore(settings.tasks_snapshot_path)
    connections = ConnectionRegistry()
    subscriptions = SubscriptionIndex()
    streams = StreamRegistry()
    admission = AdmissionControl(
        max_connections_per_ip=settings.max_connections_per_ip,
        origin_check_enabled=settings.origin_check_enabled,
        allowed_origins=settings.allowed_origins,
    )
    engine = TaskEngine(
        store=store,
        connections=connections,
        subscriptions=subscriptions,
        streams=streams,
        http=http,
        admission=admission,
        webhook_url=settings.webhook_url,
        api_timeout_seconds=settings.api_timeout_seconds,
        default_interval_ms=settings.default_interval_ms,
        default_total_executions=settings.default_total_executions,
    )

    logger.info(
        "State ready snapshot=%s webhook_url=%s max_conn_per_ip=%d origin_check=%s",
        settings.tasks_snapshot_path,
        settings.webhook_url,
        settings.max_connections_per_ip,
        settings.origin_check_enabled,
    )

    return AppState(
        settings=settings,
        store=store,
        connections=connections,
        subscriptions=subscriptions,
        streams=streams,
        admission=admission,
        http=http,
        engine=engine,
        webhooks=WebhookIngestor(engine),
    )
