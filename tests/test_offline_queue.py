from __future__ import annotations

import pytest

from app.monitoring.metrics import realtime_offline_queue_evictions_total, realtime_offline_queue_messages
from conftest import DummyWebSocket, make_user
from eventconnect.realtime import ConnectionRegistry, Endpoint, OfflineMessageQueue


def _message(index: int) -> dict[str, int]:
    return {"id": index}


def test_queue_keeps_most_recent_messages_within_bound() -> None:
    queue = OfflineMessageQueue(ConnectionRegistry(), max_messages=100)

    for index in range(150):
        queue.enqueue(1, _message(index))

    assert queue.size(1) == 100
    assert [item["id"] for item in queue.pending(1)] == list(range(50, 150))
    assert realtime_offline_queue_evictions_total.value() == 50
    assert realtime_offline_queue_messages.value() == 100


def test_queue_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        OfflineMessageQueue(ConnectionRegistry(), max_messages=0)


@pytest.mark.anyio
async def test_flush_is_noop_while_offline() -> None:
    queue = OfflineMessageQueue(ConnectionRegistry())
    queue.enqueue(1, _message(1))

    assert await queue.flush(1) == 0
    assert queue.size(1) == 1


@pytest.mark.anyio
async def test_flush_delivers_in_order_to_primary_endpoint() -> None:
    registry = ConnectionRegistry()
    queue = OfflineMessageQueue(registry)
    for index in range(3):
        queue.enqueue(1, _message(index))

    older = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    primary = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(older)
    await registry.register(primary)

    assert await queue.flush(1) == 3
    assert primary.websocket.sent == [
        {"type": "queued_message", "message": {"id": 0}},
        {"type": "queued_message", "message": {"id": 1}},
        {"type": "queued_message", "message": {"id": 2}},
    ]
    assert older.websocket.sent == []
    assert queue.size(1) == 0
    assert queue.total == 0


@pytest.mark.anyio
async def test_flush_keeps_undelivered_tail() -> None:
    registry = ConnectionRegistry()
    queue = OfflineMessageQueue(registry)
    websocket = DummyWebSocket()
    endpoint = Endpoint(user=make_user(1), websocket=websocket)
    await registry.register(endpoint)
    for index in range(3):
        queue.enqueue(1, _message(index))

    sent_before_failure = 0

    async def flaky_send(payload):
        nonlocal sent_before_failure
        if sent_before_failure == 1:
            raise RuntimeError("socket closed")
        sent_before_failure += 1
        websocket.sent.append(payload)

    websocket.send_json = flaky_send

    assert await queue.flush(1) == 1
    assert [item["id"] for item in queue.pending(1)] == [1, 2]
