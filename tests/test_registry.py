from __future__ import annotations

import logging
import random

import pytest

from app.models import PresenceStatus
from app.monitoring.metrics import realtime_connections, realtime_online_users
from conftest import DummyWebSocket, make_user
from eventconnect.realtime import CapacityError, ConnectionRegistry, Endpoint


class TransitionRecorder:
    def __init__(self) -> None:
        self.calls: list[tuple[int, PresenceStatus]] = []

    async def __call__(self, user_id: int, status: PresenceStatus) -> None:
        self.calls.append((user_id, status))


def _endpoint(user_id: int = 1) -> Endpoint:
    return Endpoint(user=make_user(user_id), websocket=DummyWebSocket())


@pytest.mark.anyio
async def test_first_and_last_endpoint_trigger_transitions() -> None:
    recorder = TransitionRecorder()
    registry = ConnectionRegistry(on_transition=recorder)
    first, second = _endpoint(), _endpoint()

    assert await registry.register(first) is True
    assert await registry.register(second) is False
    assert registry.is_online(1)
    assert registry.endpoint_count == 2

    assert await registry.unregister(first) is False
    assert registry.is_online(1)
    assert await registry.unregister(second) is True
    assert not registry.is_online(1)
    assert registry.online_user_ids() == []

    assert recorder.calls == [(1, PresenceStatus.ONLINE), (1, PresenceStatus.OFFLINE)]


@pytest.mark.anyio
async def test_sixth_endpoint_is_rejected_without_mutation() -> None:
    recorder = TransitionRecorder()
    registry = ConnectionRegistry(max_endpoints_per_user=5, on_transition=recorder)
    endpoints = [_endpoint() for _ in range(5)]
    for endpoint in endpoints:
        await registry.register(endpoint)

    extra = _endpoint()
    with pytest.raises(CapacityError):
        await registry.register(extra)

    assert registry.endpoints_for(1) == endpoints
    assert not registry.is_registered(extra)
    assert registry.endpoint_count == 5
    assert recorder.calls == [(1, PresenceStatus.ONLINE)]


@pytest.mark.anyio
async def test_online_matches_endpoint_set_under_random_interleavings() -> None:
    rng = random.Random(20261017)
    registry = ConnectionRegistry(max_endpoints_per_user=5)
    live: list[Endpoint] = []

    for _ in range(500):
        if live and (len(live) == 5 or rng.random() < 0.5):
            endpoint = live.pop(rng.randrange(len(live)))
            await registry.unregister(endpoint)
        else:
            endpoint = _endpoint()
            await registry.register(endpoint)
            live.append(endpoint)
        assert registry.is_online(1) == bool(live)
        assert set(registry.endpoints_for(1)) == set(live)


@pytest.mark.anyio
async def test_unregister_unknown_endpoint_is_noop() -> None:
    recorder = TransitionRecorder()
    registry = ConnectionRegistry(on_transition=recorder)

    assert await registry.unregister(_endpoint()) is False
    assert recorder.calls == []


@pytest.mark.anyio
async def test_primary_endpoint_is_most_recent() -> None:
    registry = ConnectionRegistry()
    first, second = _endpoint(), _endpoint()
    await registry.register(first)
    await registry.register(second)

    assert registry.primary_endpoint(1) is second
    await registry.unregister(second)
    assert registry.primary_endpoint(1) is first
    assert registry.primary_endpoint(2) is None


@pytest.mark.anyio
async def test_failing_transition_handler_is_logged(caplog) -> None:
    async def explode(user_id: int, status: PresenceStatus) -> None:
        raise RuntimeError("boom")

    registry = ConnectionRegistry(on_transition=explode)
    endpoint = _endpoint()

    with caplog.at_level(logging.ERROR):
        assert await registry.register(endpoint) is True

    assert registry.is_online(1)
    assert "Presence transition handler failed" in caplog.text


@pytest.mark.anyio
async def test_metrics_follow_registrations() -> None:
    registry = ConnectionRegistry()
    await registry.register(_endpoint(1))
    await registry.register(_endpoint(1))
    await registry.register(_endpoint(2))

    assert realtime_connections.value("chat") == 3
    assert realtime_online_users.value() == 2


@pytest.mark.anyio
async def test_deliver_to_closed_endpoint_raises_transport_error() -> None:
    from eventconnect.realtime import TransportError

    endpoint = _endpoint()
    endpoint.websocket.fail = True

    with pytest.raises(TransportError):
        await endpoint.deliver({"type": "pong"})
    assert await endpoint.send({"type": "pong"}) is False

    endpoint.websocket.kill()
    assert endpoint.is_alive() is False
