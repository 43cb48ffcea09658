# tests/test_webhook.py

from __future__ import annotations

import pytest

from notice_relay.core.ports import CLOSE_NORMAL
from notice_relay.tasks.task_models import TaskStatus
from notice_relay.tasks.task_scheduler import deliver_ready_tasks
from notice_relay.tasks.webhook import DISCONNECT_MESSAGE, WebhookEvent

from .fakes import attach_client

OWNER = "10.0.0.1:40001"
API = "https://api.example.com"


async def _subscribed(state, url: str = API):
    result = await state.engine.subscribe(OWNER, url, "x", None)
    assert result.task is not None
    return result.task


def test_event_parsing_accepts_the_legacy_correlation_key() -> None:
    event = WebhookEvent.from_payload({"suscription": OWNER, "operation": " Receive ", "data": {"v": 1}})
    assert event.client_id == OWNER
    assert event.operation == "receive"
    assert event.data == {"v": 1}
    assert event.api_url is None

    event = WebhookEvent.from_payload({"client_id": OWNER, "suscription": "other", "operation": "pause"})
    assert event.client_id == OWNER


@pytest.mark.asyncio
async def test_receive_marks_ready_to_push_with_the_payload(state, settings) -> None:
    attach_client(state)
    task = await _subscribed(state)

    touched = await state.webhooks.on_webhook_event(
        WebhookEvent(client_id=OWNER, operation="receive", data={"v": 1})
    )

    assert touched == 1
    assert task.status == TaskStatus.READY_TO_PUSH
    assert task.last_result == {"v": 1}
    assert '"ready_to_push"' in settings.tasks_snapshot_path.read_text("utf-8")


@pytest.mark.asyncio
async def test_receive_without_api_url_fans_out_to_every_subscription(state) -> None:
    attach_client(state)
    a = await _subscribed(state, f"{API}/a")
    b = await _subscribed(state, f"{API}/b")

    touched = await state.webhooks.on_webhook_event(
        WebhookEvent(client_id=OWNER, operation="receive", data=[1])
    )
    assert touched == 2
    assert a.status == b.status == TaskStatus.READY_TO_PUSH


@pytest.mark.asyncio
async def test_api_url_narrows_the_event_to_one_subscription(state) -> None:
    attach_client(state)
    a = await _subscribed(state, f"{API}/a")
    b = await _subscribed(state, f"{API}/b")

    touched = await state.webhooks.on_webhook_event(
        WebhookEvent(client_id=OWNER, operation="pause", api_url=f"{API}/b")
    )
    assert touched == 1
    assert a.status == TaskStatus.AWAITING_DATA
    assert b.status == TaskStatus.PAUSED


@pytest.mark.asyncio
async def test_fresh_receive_resumes_a_paused_subscription(state) -> None:
    conn = attach_client(state)
    task = await _subscribed(state)
    await state.webhooks.on_webhook_event(WebhookEvent(client_id=OWNER, operation="pause"))
    assert task.status == TaskStatus.PAUSED

    # a paused task is not delivered
    assert await deliver_ready_tasks(state.engine) == 0

    await state.webhooks.on_webhook_event(WebhookEvent(client_id=OWNER, operation="receive", data={"v": 2}))
    assert task.status == TaskStatus.READY_TO_PUSH
    assert task.last_result == {"v": 2}

    assert await deliver_ready_tasks(state.engine) == 1
    assert conn.sent == [{"status": "data", "service": "x", "data": {"v": 2}}]


@pytest.mark.asyncio
async def test_one_shot_and_stream_tasks_are_never_webhook_targets(state) -> None:
    attach_client(state)
    one_shot = await state.engine.submit_one_shot(OWNER, f"{API}/items")

    touched = await state.webhooks.on_webhook_event(
        WebhookEvent(client_id=OWNER, operation="receive", data=1)
    )
    assert touched == 0
    assert one_shot.status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_delete_removes_tasks_and_closes_the_connection(state) -> None:
    conn = attach_client(state)
    task = await _subscribed(state)

    touched = await state.webhooks.on_webhook_event(WebhookEvent(client_id=OWNER, operation="delete"))

    assert touched == 1
    assert state.store.get(task.id) is None
    assert state.subscriptions.get(OWNER, API) is None
    assert conn.sent[-1] == {"status": "disconnected", "message": DISCONNECT_MESSAGE}
    assert conn.closed_with == (CLOSE_NORMAL, "Sesión terminada por la API.")


@pytest.mark.asyncio
async def test_delete_for_offline_owner_still_removes_tasks(state) -> None:
    conn = attach_client(state)
    task = await _subscribed(state)
    conn.open = False

    assert await state.webhooks.on_webhook_event(WebhookEvent(client_id=OWNER, operation="delete")) == 1
    assert state.store.get(task.id) is None
    assert conn.sent == []
    assert conn.closed_with is None


@pytest.mark.asyncio
async def test_unknown_targets_and_operations_change_nothing(state) -> None:
    attach_client(state)
    task = await _subscribed(state)

    assert await state.webhooks.on_webhook_event(WebhookEvent(client_id="nobody:1", operation="receive")) == 0
    assert await state.webhooks.on_webhook_event(WebhookEvent(client_id="", operation="receive")) == 0
    assert await state.webhooks.on_webhook_event(WebhookEvent(client_id=OWNER, operation="explode")) == 0
    assert task.status == TaskStatus.AWAITING_DATA
    assert task.last_result is None
