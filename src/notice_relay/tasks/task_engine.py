# src/notice_relay/tasks/task_engine.py

from __future__ import annotations

"""
Task lifecycle engine.

Creates tasks from client requests and drives their transitions:
- one-shot: pending -> completed | error
- continuous poll: a cancellable timer per task, registered in the StreamRegistry
- subscribe-webhook: initiating -> awaiting_data (or deleted on remote failure)

Every transition is "read, compute, write, persist" with no await in between.
Outbound calls happen after the task is parked in an intermediate state; when
they resolve, the engine re-reads the store and drops the result if the task
was deleted meanwhile.
"""

import asyncio
import logging
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..connectors.admission import AdmissionControl
from ..connectors.connection_registry import ConnectionRegistry
from ..core.ports import JsonPayload, OutboundHttp, RemoteCallError
from .streams import StreamHandle, StreamRegistry
from .subscriptions import SubscriptionIndex
from .task_models import Task, TaskMode, TaskStatus, make_task_id
from .task_store import TaskStore

logger = logging.getLogger(__name__)

MIN_INTERVAL_MS = 10

SUBSCRIBE_OK_MESSAGE = "Suscripción exitosa. Esperando datos..."
SUBSCRIBE_FAILED_MESSAGE = "Fallo la conexión o la suscripción en la API."


class SubscribeOutcome(StrEnum):
    SUCCESS = "success"
    ALREADY_SUBSCRIBED = "already_subscribed"
    REMOTE_REJECTED = "remote_rejected"
    # the owner went away while the remote registration was in flight
    CANCELLED = "cancelled"


class StopOutcome(StrEnum):
    STOPPED = "stopped"
    NOT_FOUND = "not_found"


@dataclass(slots=True, frozen=True)
class SubscribeResult:
    outcome: SubscribeOutcome
    task: Task | None
    message: str


class StreamAlreadyRunningError(Exception):
    """A continuous poll for the same (owner, url, method) already has a live timer."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"already_running: {task_id}")
        self.task_id = task_id


class TaskEngine:
    def __init__(
            self,
            *,
            store: TaskStore,
            connections: ConnectionRegistry,
            subscriptions: SubscriptionIndex,
            streams: StreamRegistry,
            http: OutboundHttp,
            admission: AdmissionControl | None = None,
            webhook_url: str = "http://localhost:8443/webhook",
            api_timeout_seconds: float = 5.0,
            default_interval_ms: int = 5000,
            default_total_executions: int = 10,
    ) -> None:
        self.store = store
        self.connections = connections
        self.subscriptions = subscriptions
        self.streams = streams
        self._http = http
        self._admission = admission
        self._webhook_url = webhook_url
        self._api_timeout = float(api_timeout_seconds)
        self._default_interval_ms = int(default_interval_ms)
        self._default_total_executions = int(default_total_executions)
        self._background: set[asyncio.Task[Any]] = set()

    # ---- helpers ----

    def _new_task(
            self,
            *,
            owner: str,
            target_url: str,
            method: str,
            mode: TaskMode,
            status: TaskStatus,
            body: Any = None,
    ) -> Task:
        now = time.time()
        method = (method or "GET").upper()
        return Task(
            id=make_task_id(target_url, method, now),
            owner=owner,
            target_url=target_url,
            http_method=method,
            mode=mode,
            status=status,
            created_at=now,
            updated_at=now,
            request_body=body,
        )

    def _register(self, task: Task) -> None:
        self.store.add(task)
        self.connections.assign_task(task.owner, task.id)

    def _forget(self, task: Task) -> None:
        self.store.delete(task.id)
        self.connections.release_task(task.id)
        if task.mode == TaskMode.SUBSCRIBE:
            self.subscriptions.release(task.owner, task.target_url, task.id)

    def persist(self) -> bool:
        return self.store.save_snapshot()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        t = asyncio.create_task(coro)
        self._background.add(t)
        t.add_done_callback(self._background.discard)
        return t

    async def push(self, owner: str, payload: JsonPayload) -> bool:
        """Send to the owner's live connection. False if it is gone or the send fails."""
        conn = self.connections.connection_for(owner)
        if conn is None:
            return False
        try:
            await conn.send_json(payload)
            return True
        except Exception as e:
            logger.warning("Push to %s failed (status=%s): %r", owner, payload.get("status"), e)
            return False

    # ---- one-shot ----

    async def submit_one_shot(
            self,
            owner: str,
            target_url: str,
            method: str = "GET",
            body: Any = None,
    ) -> Task:
        """
        Run a request once. Failures are captured into the task (status=error,
        last_result=error descriptor), never raised.
        """
        task = self._new_task(
            owner=owner,
            target_url=target_url,
            method=method,
            mode=TaskMode.ONE_SHOT,
            status=TaskStatus.PENDING,
            body=body,
        )
        self._register(task)
        self.persist()

        try:
            result = await self._http.request_json(
                task.http_method, target_url, body=body, timeout=self._api_timeout
            )
            status = TaskStatus.COMPLETED
        except RemoteCallError as e:
            logger.warning("One-shot %s %s failed: %s", task.http_method, target_url, e.message)
            result = e.to_descriptor()
            status = TaskStatus.ERROR

        if self.store.get(task.id) is not task:
            logger.info("One-shot task %s vanished before its result arrived; discarding", task.id)
            return task

        task.last_result = result
        task.touch(status)
        self.persist()
        logger.info("Task %s -> %s", task.id, status.value)
        return task

    # ---- continuous poll ----

    async def start_continuous_poll(
            self,
            owner: str,
            target_url: str,
            method: str = "GET",
            body: Any = None,
            *,
            interval_ms: int | None = None,
            total_executions: int | None = None,
            run_until_close: bool = False,
    ) -> Task:
        """
        Create the task and start its timer; returns immediately.

        Raises StreamAlreadyRunningError if (owner, url, method) already streams.
        """
        method = (method or "GET").upper()
        key = (owner, target_url, method)
        existing = self.streams.find_by_key(key)
        if existing is not None:
            raise StreamAlreadyRunningError(existing.task_id)

        interval = self._default_interval_ms if interval_ms is None else int(interval_ms)
        interval = max(MIN_INTERVAL_MS, interval)
        total = self._default_total_executions if total_executions is None else int(total_executions)
        if total < 0:
            raise ValueError("total_executions must be >= 0")

        task = self._new_task(
            owner=owner,
            target_url=target_url,
            method=method,
            mode=TaskMode.CONTINUOUS,
            status=TaskStatus.RUNNING,
            body=body,
        )
        task.interval_ms = interval
        task.total_executions = total
        task.run_until_close = bool(run_until_close)
        self._register(task)

        runner = asyncio.create_task(self._run_stream(task.id, interval / 1000.0))
        self.streams.add(StreamHandle(task_id=task.id, owner=owner, key=key, runner=runner))
        self.persist()
        logger.info(
            "Stream started task_id=%s owner=%s url=%s interval_ms=%d total=%d until_close=%s",
            task.id,
            owner,
            target_url,
            interval,
            total,
            task.run_until_close,
        )
        return task

    async def _run_stream(self, task_id: str, interval_s: float) -> None:
        # Captures only the id; everything else is re-read at fire time.
        try:
            while True:
                await asyncio.sleep(interval_s)
                if task_id not in self.streams or self.store.get(task_id) is None:
                    return
                await self._execute_stream_once(task_id)
                task = self.store.get(task_id)
                if task is None or task_id not in self.streams:
                    return
                if self._stream_exhausted(task):
                    self.streams.pop(task_id)
                    task.touch(TaskStatus.COMPLETED)
                    self.persist()
                    logger.info("Stream %s completed after %d executions", task_id, task.executions_so_far)
                    await self.push(
                        task.owner,
                        {"status": "stream_stopped", "task_id": task_id, "estado": task.status.value},
                    )
                    return
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Stream runner crashed task_id=%s", task_id)
            self.streams.pop(task_id)
            task = self.store.get(task_id)
            if task is not None:
                task.touch(TaskStatus.ERROR)
                self.persist()

    @staticmethod
    def _stream_exhausted(task: Task) -> bool:
        if task.run_until_close or task.total_executions <= 0:
            return False
        return task.executions_so_far >= task.total_executions

    async def _execute_stream_once(self, task_id: str) -> None:
        task = self.store.get(task_id)
        if task is None:
            return
        method, url, body, owner = task.http_method, task.target_url, task.request_body, task.owner

        error: JsonPayload | None = None
        result: Any = None
        try:
            result = await self._http.request_json(method, url, body=body, timeout=self._api_timeout)
        except RemoteCallError as e:
            logger.info("Stream %s execution failed: %s", task_id, e.message)
            error = e.to_descriptor()

        task = self.store.get(task_id)
        if task is None or task_id not in self.streams:
            logger.debug("Stream %s stopped while its request was in flight; discarding", task_id)
            return

        task.executions_so_far += 1
        task.last_result = error if error is not None else result
        task.touch(TaskStatus.ERROR if error is not None else TaskStatus.RUNNING)
        self.persist()

        payload: JsonPayload = {
            "status": "update",
            "task_id": task_id,
            "ejecucion": task.executions_so_far,
            "ejecuciones_totales": task.total_executions,
            "estado": task.status.value,
        }
        if error is not None:
            payload["error"] = error
        else:
            payload["data"] = result
        await self.push(owner, payload)

    def stop_task(self, task_id: str, *, owner: str | None = None) -> StopOutcome:
        """
        Cancel a stream's timer. The task stays in the store (status=stopped).

        With owner, only that owner's streams can be stopped.
        """
        handle = self.streams.get(task_id)
        if handle is None or (owner is not None and handle.owner != owner):
            return StopOutcome.NOT_FOUND

        self.streams.cancel(task_id)
        task = self.store.get(task_id)
        if task is not None and not task.status.is_finished:
            task.touch(TaskStatus.STOPPED)
        self.persist()
        logger.info("Stream stopped task_id=%s", task_id)
        return StopOutcome.STOPPED

    # ---- subscribe-webhook ----

    async def subscribe(
            self,
            owner: str,
            target_url: str,
            service: str,
            token: str | None,
    ) -> SubscribeResult:
        if self.subscriptions.get(owner, target_url) is not None or self.store.find_subscription(
            owner, target_url
        ):
            return SubscribeResult(
                SubscribeOutcome.ALREADY_SUBSCRIBED, None, "Ya estás suscrito a este servicio."
            )

        task = self._new_task(
            owner=owner,
            target_url=target_url,
            method="POST",
            mode=TaskMode.SUBSCRIBE,
            status=TaskStatus.INITIATING,
        )
        task.service = service
        task.token = token
        self._register(task)
        self.subscriptions.reserve(owner, target_url, task.id)
        self.persist()

        remote_message: str | None = None
        failure: RemoteCallError | None = None
        try:
            resp = await self._http.request_json(
                "POST",
                f"{target_url.rstrip('/')}/subscribe",
                body={
                    "service": service,
                    "client_id": owner,
                    "token": token,
                    "webhook_url": self._webhook_url,
                },
                timeout=self._api_timeout,
            )
            if isinstance(resp, dict) and resp.get("message"):
                remote_message = str(resp["message"])
        except RemoteCallError as e:
            logger.error("Subscribe to %s failed for %s: %s", target_url, owner, e.message)
            failure = e

        if self.store.get(task.id) is not task:
            logger.info("Subscription task %s was removed while registering; discarding result", task.id)
            return SubscribeResult(SubscribeOutcome.CANCELLED, None, "Suscripción cancelada.")

        if failure is not None:
            self._forget(task)
            self.persist()
            return SubscribeResult(
                SubscribeOutcome.REMOTE_REJECTED,
                None,
                f"Error al suscribirse a la API: {SUBSCRIBE_FAILED_MESSAGE}",
            )

        # The remote may push (receive/pause) before it answers /subscribe; keep that state.
        if task.status == TaskStatus.INITIATING:
            task.touch(TaskStatus.AWAITING_DATA)
        self.persist()
        logger.info("Subscription %s active owner=%s url=%s (%s)", task.id, owner, target_url, remote_message)
        return SubscribeResult(SubscribeOutcome.SUCCESS, task, SUBSCRIBE_OK_MESSAGE)

    def unsubscribe(self, owner: str, target_url: str) -> bool:
        """
        Drop the subscription locally, then deregister remotely in the background.

        The remote call is best-effort: failures are logged, never retried,
        and local cleanup never waits for it.
        """
        task = self.store.find_subscription(owner, target_url)
        if task is None:
            self.subscriptions.release(owner, target_url)
            return False

        self._forget(task)
        self.persist()
        self._spawn(self._deregister(target_url, owner))
        logger.info("Unsubscribed owner=%s url=%s task_id=%s", owner, target_url, task.id)
        return True

    async def _deregister(self, target_url: str, owner: str) -> None:
        try:
            await self._http.request_json(
                "POST",
                f"{target_url.rstrip('/')}/unsubscribe",
                body={"client_id": owner},
                timeout=self._api_timeout,
            )
            logger.info("Unsubscribe request sent for %s to %s", owner, target_url)
        except RemoteCallError as e:
            logger.error("Unsubscribe from %s failed for %s: %s", target_url, owner, e.message)

    # ---- deletion / cleanup ----

    def delete_task(self, task_id: str) -> Task | None:
        """Remove a task for good (terminal). Stops its timer if it has one."""
        task = self.store.get(task_id)
        if task is None:
            return None
        self.streams.cancel(task_id)
        self._forget(task)
        self.persist()
        logger.info("Task %s deleted", task_id)
        return task

    def cleanup_connection(self, owner: str) -> None:
        """
        Single cleanup path for a closed connection. Idempotent.

        - stops every stream the owner runs
        - unsubscribes every subscription the owner holds (remote call in background)
        - marks one-shot requests cancelled mid-flight as stopped
        - drops the connection record and releases its admission slot
        """
        for handle in self.streams.for_owner(owner):
            self.stop_task(handle.task_id)

        for task in self.store.list_by_owner(owner):
            if task.mode == TaskMode.SUBSCRIBE:
                self.unsubscribe(owner, task.target_url)
            elif task.mode == TaskMode.ONE_SHOT and task.status == TaskStatus.PENDING:
                task.touch(TaskStatus.STOPPED)
                self.persist()

        record = self.connections.unregister(owner)
        if record is not None and self._admission is not None:
            self._admission.release(record.source_address)
        if record is not None:
            logger.info("Cleanup completed for client %s", owner)

    # ---- startup / shutdown ----

    def restore(self) -> int:
        """
        Load the snapshot and reconcile what could not survive a restart:
        - running/pending one-shot and continuous tasks -> stopped
        - subscriptions still initiating -> deleted (never confirmed)
        - confirmed subscriptions go back into the subscription index
        """
        loaded = self.store.load_snapshot()
        for task in self.store.list_tasks():
            if task.mode == TaskMode.SUBSCRIBE:
                if task.status == TaskStatus.INITIATING:
                    self._forget(task)
                    continue
                if not self.subscriptions.reserve(task.owner, task.target_url, task.id):
                    logger.warning("Duplicate subscription %s in snapshot; dropping it", task.id)
                    self.store.delete(task.id)
            elif task.status in (TaskStatus.PENDING, TaskStatus.RUNNING):
                task.touch(TaskStatus.STOPPED)
        if loaded:
            self.persist()
        return loaded

    async def drain(self) -> None:
        """Wait for background calls (remote deregistrations) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.streams.cancel_all()
        await self.drain()
        self.persist()
