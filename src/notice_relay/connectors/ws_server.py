# src/notice_relay/connectors/ws_server.py

"""
FastAPI transport.

- WebSocket endpoint "/": admission control, then one handler task per
  inbound frame (so a slow remote call never blocks the next message),
  and a single cleanup on close.
- POST <webhook_path>: remote push events.
- GET /health: counters for probes.

The lifespan loads the snapshot, runs the polling loop, and on shutdown
cancels timers, drains background calls and writes a final snapshot.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from ..core.ports import CLOSE_NORMAL, CLOSE_POLICY_VIOLATION, JsonPayload
from ..core.state import AppState
from ..tasks.task_api import handle_client_message
from ..tasks.task_scheduler import run_task_scheduler
from ..tasks.webhook import WebhookEvent
from .connection_registry import owner_identity

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """ClientConnection adapter over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._ws.client_state == WebSocketState.CONNECTED
            and self._ws.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, payload: JsonPayload) -> None:
        await self._ws.send_text(json.dumps(payload, ensure_ascii=False))

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        await self._ws.close(code=code, reason=reason)


async def _serve_message(state: AppState, owner: str, conn: WebSocketConnection, raw: str | bytes) -> None:
    reply = await handle_client_message(state.engine, owner, raw)
    if not conn.is_open:
        logger.debug("Client %s gone before reply (status=%s)", owner, reply.get("status"))
        return
    try:
        await conn.send_json(reply)
    except Exception as e:
        logger.warning("Reply to %s failed: %r", owner, e)


async def serve_client(state: AppState, websocket: WebSocket) -> None:
    """
    One client connection, from handshake to cleanup.

    The admission slot taken here is released exactly once: by
    cleanup_connection() once the connection is registered, or right away
    if the handshake fails before that.
    """
    host = websocket.client.host if websocket.client else "unknown"
    port = websocket.client.port if websocket.client else 0

    decision = state.admission.on_connect_attempt(host, websocket.headers.get("origin"))
    if not decision.accepted:
        await websocket.accept()
        await websocket.close(code=decision.code or CLOSE_POLICY_VIOLATION, reason=decision.reason)
        return

    try:
        await websocket.accept()
    except BaseException:
        logger.warning("Handshake with %s failed; releasing its connection slot", host)
        state.admission.release(host)
        raise

    owner = owner_identity(host, port)
    conn = WebSocketConnection(websocket)
    state.connections.register(owner, host, conn)
    inflight: set[asyncio.Task[None]] = set()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            logger.debug("Message from %s: %.200r", owner, raw)
            t = asyncio.create_task(_serve_message(state, owner, conn, raw))
            inflight.add(t)
            t.add_done_callback(inflight.discard)
    finally:
        # Closing a connection cancels everything it still has in flight.
        for t in list(inflight):
            t.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
        state.engine.cleanup_connection(owner)


def create_app(state: AppState) -> FastAPI:
    settings: Any = state.settings

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        state.engine.restore()
        scheduler = asyncio.create_task(
            run_task_scheduler(
                state.engine,
                interval_seconds=settings.poll_interval_seconds,
                retention_seconds=settings.task_retention_seconds,
            )
        )
        logger.info("TaskScheduler initialized and polling loop active.")
        try:
            yield
        finally:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler
            await state.engine.shutdown()
            await state.http.aclose()
            logger.info("TaskScheduler stopped.")

    app = FastAPI(title=str(getattr(settings, "app_name", "notice-relay")), lifespan=lifespan)

    @app.websocket("/")
    async def client_socket(websocket: WebSocket) -> None:
        await serve_client(state, websocket)

    @app.post(settings.webhook_path)
    async def webhook(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Malformed webhook body from %s", request.client.host if request.client else "?")
            return JSONResponse({"status": "error", "message": "JSON inválido"}, status_code=400)
        if not isinstance(payload, dict):
            # Well-formed but not an event: acknowledged and dropped, like unknown targets.
            logger.warning("Webhook body is not a JSON object (%s); discarding", type(payload).__name__)
            return JSONResponse({"status": "success"})

        await state.webhooks.on_webhook_event(WebhookEvent.from_payload(payload))
        return JSONResponse({"status": "success"})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "tasks": len(state.store),
            "connections": len(state.connections),
            "streams": len(state.streams),
        }

    return app
