# src/notice_relay/tasks/webhook.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.ports import CLOSE_NORMAL
from .task_engine import TaskEngine
from .task_models import Task, TaskMode, TaskStatus

logger = logging.getLogger(__name__)

DISCONNECT_MESSAGE = "Su sesión ha expirado o ha sido terminada por la API."


class WebhookOperation(StrEnum):
    RECEIVE = "receive"
    PAUSE = "pause"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class WebhookEvent:
    client_id: str
    operation: str
    data: Any = None
    api_url: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent:
        # `suscription` is the older name of the correlation key.
        client_id = payload.get("client_id")
        if client_id is None:
            client_id = payload.get("suscription")
        api_url = payload.get("api_url")
        return cls(
            client_id=str(client_id or ""),
            operation=str(payload.get("operation") or "").strip().lower(),
            data=payload.get("data"),
            api_url=str(api_url) if api_url else None,
        )


class WebhookIngestor:
    """
    Folds remote push events into subscribe-webhook tasks.

    The handler never raises for unknown targets or operations: those are
    logged and dropped, and the HTTP layer still acknowledges the call.
    State changes complete (and persist) before any await, so the polling
    loop never observes a half-applied event.
    """

    def __init__(self, engine: TaskEngine) -> None:
        self._engine = engine

    def _targets(self, event: WebhookEvent) -> list[Task]:
        store = self._engine.store
        if event.api_url:
            task = store.find_subscription(event.client_id, event.api_url)
            return [task] if task is not None else []
        return [t for t in store.list_by_owner(event.client_id) if t.mode == TaskMode.SUBSCRIBE]

    async def on_webhook_event(self, event: WebhookEvent) -> int:
        """Apply the event. Returns how many tasks it touched."""
        tasks = self._targets(event) if event.client_id else []
        if not tasks:
            logger.warning("Webhook for unregistered client: %r", event.client_id)
            return 0

        if event.operation == WebhookOperation.RECEIVE:
            for task in tasks:
                task.last_result = event.data
                task.touch(TaskStatus.READY_TO_PUSH)
                logger.info("Task %s of client %s -> ready_to_push", task.id, task.owner)
            self._engine.persist()
            return len(tasks)

        if event.operation == WebhookOperation.PAUSE:
            for task in tasks:
                task.touch(TaskStatus.PAUSED)
                logger.info("Task %s of client %s paused", task.id, task.owner)
            self._engine.persist()
            return len(tasks)

        if event.operation == WebhookOperation.DELETE:
            logger.warning("API requested deletion of tasks and disconnect for client %s", event.client_id)
            for task in tasks:
                self._engine.delete_task(task.id)
            conn = self._engine.connections.connection_for(event.client_id)
            if conn is not None:
                await self._engine.push(
                    event.client_id, {"status": "disconnected", "message": DISCONNECT_MESSAGE}
                )
                try:
                    await conn.close(CLOSE_NORMAL, "Sesión terminada por la API.")
                except Exception as e:
                    logger.warning("Closing connection of %s failed: %r", event.client_id, e)
            return len(tasks)

        logger.warning("Unknown webhook operation %r for client %s", event.operation, event.client_id)
        return 0
