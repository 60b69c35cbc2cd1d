"""Presence cache backends."""

from __future__ import annotations

import asyncio
import time

from redis import asyncio as redis_asyncio

from app.config import Settings


class InMemoryPresenceCache:
    """Fallback cache implementation used when no Redis URL is configured."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at: float | None = None
        if ttl_seconds > 0:
            expires_at = time.monotonic() + ttl_seconds
        async with self._lock:
            self._store[key] = (value, expires_at)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                self._store.pop(key, None)
                return None
            return value

    async def close(self) -> None:
        async with self._lock:
            self._store.clear()


class RedisPresenceCache:
    """Thin ``redis.asyncio`` wrapper adhering to the presence cache protocol."""

    def __init__(self, url: str) -> None:
        self._client = redis_asyncio.from_url(url, decode_responses=True)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self._client.setex(key, ttl_seconds, value)
        else:
            await self._client.set(key, value)

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_presence_cache(settings: Settings) -> InMemoryPresenceCache | RedisPresenceCache:
    """Return the configured presence cache, in-memory unless a Redis URL is set."""

    if settings.presence_cache_url:
        return RedisPresenceCache(settings.presence_cache_url)
    return InMemoryPresenceCache()
