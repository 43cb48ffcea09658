# src/notice_relay/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .ports import OutboundHttp

if TYPE_CHECKING:
    from ..connectors.admission import AdmissionControl
    from ..connectors.connection_registry import ConnectionRegistry
    from ..tasks.streams import StreamRegistry
    from ..tasks.subscriptions import SubscriptionIndex
    from ..tasks.task_engine import TaskEngine
    from ..tasks.task_store import TaskStore
    from ..tasks.webhook import WebhookIngestor


@dataclass
class AppState:
    # Settings live on the state so transports can read ports/paths from one place.
    settings: object

    store: TaskStore
    connections: ConnectionRegistry
    subscriptions: SubscriptionIndex
    streams: StreamRegistry
    admission: AdmissionControl
    http: OutboundHttp
    engine: TaskEngine
    webhooks: WebhookIngestor
