from __future__ import annotations

import asyncio
import logging

import pytest

from app.models import PresenceStatus
from app.monitoring.metrics import realtime_reconciled_endpoints_total
from conftest import DummyWebSocket, make_user
from eventconnect.realtime import ConnectionRegistry, Endpoint, SessionReconciler


class TransitionRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[int, PresenceStatus]] = []

    async def __call__(self, user_id: int, status: PresenceStatus) -> None:
        self.calls.append((user_id, status))


@pytest.mark.anyio
async def test_run_once_removes_dead_endpoint_and_fires_one_offline_transition() -> None:
    recorder = TransitionRecorder()
    registry = ConnectionRegistry(on_transition=recorder)
    reconciler = SessionReconciler(registry, on_dead=registry.unregister)
    dead = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    alive = Endpoint(user=make_user(2), websocket=DummyWebSocket())
    await registry.register(dead)
    await registry.register(alive)
    dead.websocket.kill()

    assert await reconciler.run_once() == 1
    assert await reconciler.run_once() == 0

    assert not registry.is_online(1)
    assert registry.is_online(2)
    assert recorder.calls.count((1, PresenceStatus.OFFLINE)) == 1
    assert realtime_reconciled_endpoints_total.value() == 1


@pytest.mark.anyio
async def test_dead_endpoint_with_live_sibling_keeps_user_online() -> None:
    recorder = TransitionRecorder()
    registry = ConnectionRegistry(on_transition=recorder)
    reconciler = SessionReconciler(registry, on_dead=registry.unregister)
    dead = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    sibling = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(dead)
    await registry.register(sibling)
    dead.websocket.kill()

    await reconciler.run_once()

    assert registry.endpoints_for(1) == [sibling]
    assert (1, PresenceStatus.OFFLINE) not in recorder.calls


@pytest.mark.anyio
async def test_cleanup_failure_is_logged_and_sweep_continues(caplog) -> None:
    registry = ConnectionRegistry()
    first = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    second = Endpoint(user=make_user(2), websocket=DummyWebSocket())
    await registry.register(first)
    await registry.register(second)
    first.websocket.kill()
    second.websocket.kill()

    async def on_dead(endpoint: Endpoint) -> None:
        if endpoint is first:
            raise RuntimeError("boom")
        await registry.unregister(endpoint)

    reconciler = SessionReconciler(registry, on_dead=on_dead)
    with caplog.at_level(logging.ERROR):
        assert await reconciler.run_once() == 1

    assert "Failed to clean up dead endpoint" in caplog.text
    assert not registry.is_online(2)


@pytest.mark.anyio
async def test_background_task_sweeps_and_stops() -> None:
    registry = ConnectionRegistry()
    reconciler = SessionReconciler(registry, on_dead=registry.unregister, interval_seconds=0.01)
    endpoint = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(endpoint)
    endpoint.websocket.kill()

    await reconciler.start()
    assert reconciler.running
    for _ in range(100):
        if not registry.is_online(1):
            break
        await asyncio.sleep(0.01)
    await reconciler.stop()

    assert not registry.is_online(1)
    assert not reconciler.running


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        SessionReconciler(ConnectionRegistry(), on_dead=lambda endpoint: None, interval_seconds=0)
