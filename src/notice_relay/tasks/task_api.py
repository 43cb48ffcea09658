# src/notice_relay/tasks/task_api.py

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .task_engine import (
    StopOutcome,
    StreamAlreadyRunningError,
    SubscribeOutcome,
    TaskEngine,
)
from .task_models import Task, TaskStatus

ClientReply = dict[str, Any]
OperationHandler = Callable[[TaskEngine, str, dict[str, Any]], Awaitable[ClientReply]]

logger = logging.getLogger(__name__)

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}

INVALID_JSON_MESSAGE = "Error en el formato del mensaje JSON."
INVALID_OPERATION_MESSAGE = (
    'Operación no válida. Use "subscribe", "unsubscribe", "stop" '
    'o envíe una petición con "url_api_destino".'
)


class ClientInputError(ValueError):
    """A client message that cannot be acted on; answered with status=error."""


def error_reply(message: str, **extra: Any) -> ClientReply:
    return {"status": "error", "message": message, **extra}


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ClientInputError(f'El campo "{key}" es obligatorio.')
    return value.strip()


def _optional_int(data: dict[str, Any], key: str, *, minimum: int) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ClientInputError(f'El campo "{key}" debe ser un número entero.')
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ClientInputError(f'El campo "{key}" debe ser un número entero.') from None
    if n < minimum:
        raise ClientInputError(f'El campo "{key}" debe ser >= {minimum}.')
    return n


def _optional_bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ClientInputError(f'El campo "{key}" debe ser true o false.')
    return value


class OperationRegistry:
    """Routes client operations ({"operation": ...}) to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, OperationHandler] = {}
        self._request_handler: OperationHandler | None = None

    def register(self, name: str, handler: OperationHandler, aliases: list[str] | None = None) -> None:
        self._handlers[name.lower()] = handler
        for alias in aliases or []:
            self._handlers[alias.lower()] = handler

    def register_request(self, handler: OperationHandler) -> None:
        """Handler for operation-less messages carrying "url_api_destino"."""
        self._request_handler = handler

    async def handle(self, engine: TaskEngine, owner: str, data: dict[str, Any]) -> ClientReply:
        operation = data.get("operation")
        if operation is not None:
            handler = self._handlers.get(str(operation).strip().lower())
        elif "url_api_destino" in data:
            handler = self._request_handler
        else:
            handler = None

        if handler is None:
            return error_reply(INVALID_OPERATION_MESSAGE)

        try:
            return await handler(engine, owner, data)
        except ClientInputError as e:
            return error_reply(str(e))


registry = OperationRegistry()


async def handle_client_message(engine: TaskEngine, owner: str, raw: str | bytes) -> ClientReply:
    """Parse one inbound frame and run it. Always returns a JSON-able reply."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        logger.info("Malformed client message from %s", owner)
        return error_reply(INVALID_JSON_MESSAGE)

    if not isinstance(data, dict):
        return error_reply(INVALID_JSON_MESSAGE)

    return await registry.handle(engine, owner, data)


def _one_shot_reply(task: Task) -> ClientReply:
    if task.status == TaskStatus.ERROR:
        return {
            "status": "error",
            "task_id": task.id,
            "message": "La petición a la API falló.",
            "error": task.last_result,
        }
    return {"status": "success", "task_id": task.id, "data": task.last_result}


async def op_subscribe(engine: TaskEngine, owner: str, data: dict[str, Any]) -> ClientReply:
    api_url = _require_str(data, "api_url")
    service = _require_str(data, "service")
    token = data.get("token")
    token = str(token) if token is not None else None

    result = await engine.subscribe(owner, api_url, service, token)

    if result.outcome == SubscribeOutcome.SUCCESS and result.task is not None:
        return {"status": "success", "message": result.message, "task_id": result.task.id}
    if result.outcome == SubscribeOutcome.ALREADY_SUBSCRIBED:
        return {"status": "info", "message": result.message}
    return error_reply(result.message)


async def op_unsubscribe(engine: TaskEngine, owner: str, data: dict[str, Any]) -> ClientReply:
    api_url = _require_str(data, "api_url")
    if engine.unsubscribe(owner, api_url):
        return {"status": "success", "message": "Suscripción cancelada."}
    return {"status": "info", "message": "No existe una suscripción para este servicio."}


async def op_stop(engine: TaskEngine, owner: str, data: dict[str, Any]) -> ClientReply:
    task_id = _require_str(data, "task_id")
    if engine.stop_task(task_id, owner=owner) == StopOutcome.STOPPED:
        return {"status": "stream_stopped", "task_id": task_id, "message": "Stream detenido."}
    return {"status": "stream_not_found", "task_id": task_id, "message": "No se encontró el stream."}


async def op_request(engine: TaskEngine, owner: str, data: dict[str, Any]) -> ClientReply:
    """One-shot request, or a continuous poll when "continuo" is true."""
    url = _require_str(data, "url_api_destino")
    method = str(data.get("metodo_peticion") or "GET").strip().upper()
    if method not in HTTP_METHODS:
        raise ClientInputError(f"Método HTTP no soportado: {method}")
    body = data.get("body_peticion")

    if not _optional_bool(data, "continuo"):
        task = await engine.submit_one_shot(owner, url, method, body)
        return _one_shot_reply(task)

    interval = _optional_int(data, "interval", minimum=1)
    total = _optional_int(data, "ejecuciones_totales", minimum=0)
    until_close = _optional_bool(data, "ejecutandose_hasta_cierre")

    try:
        task = await engine.start_continuous_poll(
            owner,
            url,
            method,
            body,
            interval_ms=interval,
            total_executions=total,
            run_until_close=until_close,
        )
    except StreamAlreadyRunningError as e:
        return error_reply(
            "Ya existe un stream activo para esta petición.",
            code="already_running",
            task_id=e.task_id,
        )

    return {
        "status": "stream_started",
        "task_id": task.id,
        "interval": task.interval_ms,
        "ejecuciones_totales": task.total_executions,
        "ejecutandose_hasta_cierre": task.run_until_close,
    }


registry.register("subscribe", op_subscribe)
registry.register("unsubscribe", op_unsubscribe)
registry.register("stop", op_stop, aliases=["stop_stream"])
registry.register_request(op_request)
