# tests/test_task_api.py

from __future__ import annotations

import json

import pytest

from notice_relay.core.ports import RemoteCallError
from notice_relay.tasks.task_api import INVALID_JSON_MESSAGE, handle_client_message

from .fakes import attach_client

OWNER = "10.0.0.1:40001"
API = "https://api.example.com"


async def _send(state, message) -> dict:
    raw = message if isinstance(message, (str, bytes)) else json.dumps(message)
    return await handle_client_message(state.engine, OWNER, raw)


@pytest.mark.asyncio
async def test_malformed_frames_get_an_error_reply(state) -> None:
    attach_client(state)

    assert await _send(state, "{nope") == {"status": "error", "message": INVALID_JSON_MESSAGE}
    assert await _send(state, "[1, 2]") == {"status": "error", "message": INVALID_JSON_MESSAGE}
    assert len(state.store) == 0


@pytest.mark.asyncio
async def test_unknown_operation_and_missing_fields(state) -> None:
    attach_client(state)

    reply = await _send(state, {"operation": "dance"})
    assert reply["status"] == "error"

    reply = await _send(state, {"hello": "world"})
    assert reply["status"] == "error"

    reply = await _send(state, {"operation": "subscribe", "service": "x"})
    assert reply == {"status": "error", "message": 'El campo "api_url" es obligatorio.'}


@pytest.mark.asyncio
async def test_subscribe_then_duplicate_then_unsubscribe(state) -> None:
    attach_client(state)

    reply = await _send(state, {"operation": "subscribe", "api_url": API, "service": "x", "token": "t"})
    assert reply["status"] == "success"
    assert reply["message"] == "Suscripción exitosa. Esperando datos..."
    assert state.store.get(reply["task_id"]) is not None

    reply = await _send(state, {"operation": "subscribe", "api_url": API, "service": "x"})
    assert reply == {"status": "info", "message": "Ya estás suscrito a este servicio."}

    reply = await _send(state, {"operation": "unsubscribe", "api_url": API})
    assert reply == {"status": "success", "message": "Suscripción cancelada."}

    reply = await _send(state, {"operation": "unsubscribe", "api_url": API})
    assert reply["status"] == "info"
    await state.engine.drain()


@pytest.mark.asyncio
async def test_subscribe_remote_failure_is_an_error_reply(state, http) -> None:
    attach_client(state)
    http.respond(f"{API}/subscribe", RemoteCallError("network", "ConnectError: refused"))

    reply = await _send(state, {"operation": "subscribe", "api_url": API, "service": "x"})

    assert reply["status"] == "error"
    assert len(state.store) == 0


@pytest.mark.asyncio
async def test_one_shot_request_replies_with_data_or_error(state, http) -> None:
    attach_client(state)
    http.respond(f"{API}/items", {"items": []})
    http.respond(f"{API}/broken", RemoteCallError("invalid_json", "GET did not return JSON", status_code=200))

    ok = await _send(state, {"url_api_destino": f"{API}/items"})
    assert ok["status"] == "success"
    assert ok["data"] == {"items": []}

    failed = await _send(state, {"url_api_destino": f"{API}/broken", "metodo_peticion": "get"})
    assert failed["status"] == "error"
    assert failed["error"] == {"type": "invalid_json", "message": "GET did not return JSON", "status_code": 200}
    assert state.store.get(failed["task_id"]).status == "error"


@pytest.mark.asyncio
async def test_request_validation(state) -> None:
    attach_client(state)

    reply = await _send(state, {"url_api_destino": f"{API}/items", "metodo_peticion": "FETCH"})
    assert reply["status"] == "error"

    reply = await _send(state, {"url_api_destino": f"{API}/items", "continuo": True, "interval": "soon"})
    assert reply["status"] == "error"

    reply = await _send(state, {"url_api_destino": f"{API}/items", "continuo": True, "ejecuciones_totales": -1})
    assert reply["status"] == "error"
    assert len(state.store) == 0


@pytest.mark.asyncio
async def test_flags_must_be_real_booleans(state, http) -> None:
    attach_client(state)

    reply = await _send(
        state,
        {"url_api_destino": f"{API}/poll", "continuo": True, "ejecutandose_hasta_cierre": "false"},
    )
    assert reply == {"status": "error", "message": 'El campo "ejecutandose_hasta_cierre" debe ser true o false.'}

    reply = await _send(state, {"url_api_destino": f"{API}/poll", "continuo": "true"})
    assert reply["status"] == "error"

    assert len(state.store) == 0
    assert len(state.streams) == 0
    assert http.calls == []

    # explicit false is a plain one-shot
    reply = await _send(state, {"url_api_destino": f"{API}/poll", "continuo": False})
    assert reply["status"] == "success"


@pytest.mark.asyncio
async def test_stream_start_duplicate_and_stop(state) -> None:
    attach_client(state)
    request = {
        "url_api_destino": f"{API}/poll",
        "continuo": True,
        "interval": 1000,
        "ejecuciones_totales": 5,
    }

    started = await _send(state, request)
    assert started["status"] == "stream_started"
    assert started["interval"] == 1000
    assert started["ejecuciones_totales"] == 5
    assert started["ejecutandose_hasta_cierre"] is False

    again = await _send(state, request)
    assert again["status"] == "error"
    assert again["code"] == "already_running"
    assert again["task_id"] == started["task_id"]

    stopped = await _send(state, {"operation": "stop", "task_id": started["task_id"]})
    assert stopped["status"] == "stream_stopped"

    missing = await _send(state, {"operation": "stop_stream", "task_id": started["task_id"]})
    assert missing["status"] == "stream_not_found"


@pytest.mark.asyncio
async def test_clients_cannot_stop_each_others_streams(state) -> None:
    attach_client(state)
    attach_client(state, owner="10.0.0.2:1", source="10.0.0.2")
    started = await _send(state, {"url_api_destino": f"{API}/poll", "continuo": True, "interval": 1000})

    reply = await handle_client_message(
        state.engine, "10.0.0.2:1", json.dumps({"operation": "stop", "task_id": started["task_id"]})
    )
    assert reply["status"] == "stream_not_found"
    assert started["task_id"] in state.streams

    await state.streams.cancel_all()
