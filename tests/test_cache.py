from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.config import Settings
from app.services import cache as cache_module
from app.services.cache import InMemoryPresenceCache, RedisPresenceCache, create_presence_cache


@pytest.mark.anyio
async def test_in_memory_cache_expires_entries(monkeypatch) -> None:
    now = [100.0]
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    cache = InMemoryPresenceCache()

    await cache.set("eventconnect:presence:user:1", "online", 30)
    await cache.set("eventconnect:presence:user:2", "away", 0)

    now[0] += 29
    assert await cache.get("eventconnect:presence:user:1") == "online"
    now[0] += 1
    assert await cache.get("eventconnect:presence:user:1") is None
    assert await cache.get("eventconnect:presence:user:2") == "away"

    await cache.close()
    assert await cache.get("eventconnect:presence:user:2") is None


def test_factory_picks_backend_from_settings() -> None:
    assert isinstance(create_presence_cache(Settings(presence_cache_url="")), InMemoryPresenceCache)
    assert isinstance(
        create_presence_cache(Settings(presence_cache_url="redis://localhost:6379/0")),
        RedisPresenceCache,
    )
