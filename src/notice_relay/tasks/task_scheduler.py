# src/notice_relay/tasks/task_scheduler.py

from __future__ import annotations

"""
Polling loop.

Every tick:
- fetches subscribe-webhook tasks in ready_to_push,
- resolves the owner's live connection through the ConnectionRegistry,
- pushes {"status": "data", ...} and moves the task back to awaiting_data,
- leaves undeliverable tasks in ready_to_push for the next tick,
- prunes old finished tasks and writes the full snapshot.

Continuous-poll timers are not driven from here; each has its own runner
in the StreamRegistry.
"""

import asyncio
import logging
import time

from .task_engine import TaskEngine
from .task_models import TaskStatus

logger = logging.getLogger(__name__)


async def deliver_ready_tasks(
        engine: TaskEngine,
        *,
        retention_seconds: float = 0.0,
        now_ts: float | None = None,
) -> int:
    """
    One polling tick. Returns how many results were delivered.

    A task is claimed (ready_to_push -> awaiting_data) before the send is
    awaited. If the send fails, it is put back only when nothing else
    touched it meanwhile; a webhook landing mid-send keeps its newer result.
    """
    delivered = 0

    for task in engine.store.list_by_status(TaskStatus.READY_TO_PUSH):
        # Earlier sends in this tick yielded control; re-check before acting.
        if engine.store.get(task.id) is not task or task.status != TaskStatus.READY_TO_PUSH:
            continue

        if engine.connections.connection_for(task.owner) is None:
            logger.warning(
                "Client %s is not connected or ready. Task %s stays ready_to_push.",
                task.owner,
                task.id,
            )
            continue

        payload = {"status": "data", "service": task.service, "data": task.last_result}
        task.touch(TaskStatus.AWAITING_DATA)
        claimed_revision = task.revision

        if await engine.push(task.owner, payload):
            delivered += 1
            logger.info("Result sent to client %s. Task %s -> awaiting_data.", task.owner, task.id)
            continue

        if engine.store.get(task.id) is task and task.revision == claimed_revision:
            task.touch(TaskStatus.READY_TO_PUSH)
            logger.warning("Delivery to %s failed; task %s back to ready_to_push.", task.owner, task.id)

    if retention_seconds > 0:
        now = time.time() if now_ts is None else now_ts
        engine.store.prune_finished(
            older_than_ts=now - retention_seconds,
            keep=engine.streams.task_ids(),
        )

    engine.persist()
    return delivered


async def run_task_scheduler(
        engine: TaskEngine,
        *,
        interval_seconds: float = 5.0,
        retention_seconds: float = 0.0,
) -> None:
    """
    Simple polling scheduler: deliver_ready_tasks() every interval_seconds.

    A failing tick is logged and the loop goes on.
    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.info("Task scheduler started (interval=%.2fs).", sleep_s)

    while True:
        try:
            await deliver_ready_tasks(engine, retention_seconds=retention_seconds)
        except Exception:
            logger.exception("Polling tick failed")

        await asyncio.sleep(sleep_s)
