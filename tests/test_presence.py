from __future__ import annotations

import asyncio
import logging

import pytest

from app.models import PresenceStatus
from app.monitoring.metrics import realtime_presence_cache_errors_total
from app.services.cache import InMemoryPresenceCache
from conftest import DummyWebSocket, FakeChatStore, make_user
from eventconnect.realtime import (
    Broadcaster,
    ConnectionRegistry,
    Endpoint,
    PresencePublisher,
    RoomMembershipIndex,
)


class FailingCache:
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise ConnectionError("redis down")

    async def get(self, key: str) -> str | None:
        raise ConnectionError("redis down")

    async def close(self) -> None:
        return None


def _publisher(cache, store=None) -> tuple[PresencePublisher, ConnectionRegistry, FakeChatStore]:
    registry = ConnectionRegistry()
    store = store or FakeChatStore()
    publisher = PresencePublisher(
        registry,
        Broadcaster(registry, RoomMembershipIndex()),
        store,
        cache,
        cache_ttl_seconds=60,
        namespace="test",
    )
    registry.bind(publisher)
    return publisher, registry, store


@pytest.mark.anyio
async def test_transitions_are_broadcast_persisted_and_cached() -> None:
    cache = InMemoryPresenceCache()
    publisher, registry, store = _publisher(cache)
    watcher = Endpoint(user=make_user(9), websocket=DummyWebSocket())
    await registry.register(watcher)

    alice = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(alice)
    await registry.unregister(alice)

    assert watcher.websocket.of_type("user_status_changed") == [
        {"type": "user_status_changed", "user_id": 1, "status": "online"},
        {"type": "user_status_changed", "user_id": 1, "status": "offline"},
    ]
    assert (1, "online") in store.statuses and (1, "offline") in store.statuses
    assert await cache.get("test:presence:user:1") == "offline"


@pytest.mark.anyio
async def test_stale_transition_is_dropped() -> None:
    publisher, registry, store = _publisher(InMemoryPresenceCache())

    assert await publisher.publish(1, PresenceStatus.ONLINE) is False
    assert store.statuses == []


@pytest.mark.anyio
async def test_status_of_prefers_registry_then_cache() -> None:
    cache = InMemoryPresenceCache()
    publisher, registry, _ = _publisher(cache)
    await cache.set(publisher.cache_key(2), "online", 60)

    endpoint = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(endpoint)

    assert await publisher.status_of(1) == PresenceStatus.ONLINE
    assert await publisher.status_of(2) == PresenceStatus.ONLINE
    assert await publisher.status_of(3) == PresenceStatus.OFFLINE


@pytest.mark.anyio
async def test_cache_failures_are_logged_once_and_counted(caplog) -> None:
    publisher, registry, store = _publisher(FailingCache())

    with caplog.at_level(logging.WARNING):
        for _ in range(2):
            endpoint = Endpoint(user=make_user(1), websocket=DummyWebSocket())
            await registry.register(endpoint)
            await registry.unregister(endpoint)
        assert await publisher.status_of(1) == PresenceStatus.OFFLINE

    warnings = [record for record in caplog.records if "Presence cache unavailable" in record.getMessage()]
    assert len(warnings) == 1
    assert realtime_presence_cache_errors_total.value("set") == 4
    assert realtime_presence_cache_errors_total.value("get") == 1
    assert len(store.statuses) == 4


@pytest.mark.anyio
async def test_store_failure_does_not_propagate(caplog) -> None:
    store = FakeChatStore()
    store.fail_status = True
    cache = InMemoryPresenceCache()
    _, registry, _ = _publisher(cache, store)

    with caplog.at_level(logging.WARNING):
        await registry.register(Endpoint(user=make_user(1), websocket=DummyWebSocket()))

    assert registry.is_online(1)
    assert "Unable to persist presence" in caplog.text
    assert await cache.get("test:presence:user:1") == "online"


class HeldFirstSendWebSocket(DummyWebSocket):
    """Socket whose first send blocks until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()
        self.held = False

    async def send_json(self, payload) -> None:
        if not self.held:
            self.held = True
            await self.release.wait()
        await super().send_json(payload)


@pytest.mark.anyio
async def test_slow_offline_broadcast_does_not_overwrite_newer_online_status() -> None:
    cache = InMemoryPresenceCache()
    publisher, registry, store = _publisher(cache)
    first = Endpoint(user=make_user(1), websocket=DummyWebSocket())
    await registry.register(first)
    watcher_socket = HeldFirstSendWebSocket()
    await registry.register(Endpoint(user=make_user(9), websocket=watcher_socket))

    going_offline = asyncio.create_task(registry.unregister(first))
    while not watcher_socket.held:
        await asyncio.sleep(0)

    await registry.register(Endpoint(user=make_user(1), websocket=DummyWebSocket()))
    watcher_socket.release.set()
    assert await going_offline is True

    assert registry.is_online(1)
    assert store.statuses[-1] == (1, "online")
    assert (1, "offline") not in store.statuses
    assert await cache.get(publisher.cache_key(1)) == "online"
    assert await publisher.status_of(1) == PresenceStatus.ONLINE
