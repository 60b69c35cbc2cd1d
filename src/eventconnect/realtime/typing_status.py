"""Typing indicators per room."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict

from .broadcast import Broadcaster
from .events import OutboundEvent, envelope
from .registry import Endpoint
from .store import UserProfile


logger = logging.getLogger(__name__)


class TypingStatusStore:
    """Stores transient typing indicators.

    A room is *idle* when nobody types in it; every mutating call reports the
    rooms it turned idle so that exactly one stop notification is emitted per
    idle transition.  Expired entries are dropped whenever a room is touched
    and by :meth:`expire`.
    """

    def __init__(self, ttl_seconds: float = 0.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[int, Dict[int, tuple[str, float]]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def _is_expired(self, ts: float, now: float) -> bool:
        return self._ttl > 0 and now - ts > self._ttl

    def _cleanup_expired(self, bucket: Dict[int, tuple[str, float]], now: float) -> list[int]:
        removed = [user_id for user_id, (_, ts) in bucket.items() if self._is_expired(ts, now)]
        for user_id in removed:
            bucket.pop(user_id, None)
        return removed

    def start(self, room_id: int, user_id: int, username: str) -> bool:
        """Mark *user_id* as typing; return True when they were not typing before."""
        now = self._clock()
        bucket = self._entries.setdefault(room_id, {})
        self._cleanup_expired(bucket, now)
        newly_typing = user_id not in bucket
        bucket[user_id] = (username, now)
        return newly_typing

    def stop(self, room_id: int, user_id: int) -> bool:
        """Remove *user_id*; return True when this left the room idle."""
        bucket = self._entries.get(room_id)
        if not bucket:
            return False
        expired = self._cleanup_expired(bucket, self._clock())
        removed = bucket.pop(user_id, None) is not None
        if bucket:
            return False
        self._entries.pop(room_id, None)
        return removed or bool(expired)

    def clear_user(self, user_id: int, room_ids: set[int] | None = None) -> list[int]:
        """Drop *user_id* from every room (or only *room_ids*); return rooms left idle."""
        idle: list[int] = []
        candidates = list(self._entries) if room_ids is None else [r for r in room_ids if r in self._entries]
        for room_id in candidates:
            bucket = self._entries[room_id]
            if user_id not in bucket:
                continue
            if self.stop(room_id, user_id):
                idle.append(room_id)
        return idle

    def expire(self) -> list[tuple[int, int]]:
        """Drop stale entries everywhere; return ``(room_id, last_user_id)`` for rooms left idle."""
        now = self._clock()
        idle: list[tuple[int, int]] = []
        for room_id in list(self._entries):
            bucket = self._entries[room_id]
            removed = self._cleanup_expired(bucket, now)
            if removed and not bucket:
                self._entries.pop(room_id, None)
                idle.append((room_id, removed[-1]))
        return idle

    def typing_in(self, room_id: int) -> list[dict[str, str | int]]:
        now = self._clock()
        entries: list[dict[str, str | int]] = [
            {"user_id": user_id, "username": username}
            for user_id, (username, ts) in self._entries.get(room_id, {}).items()
            if not self._is_expired(ts, now)
        ]
        entries.sort(key=lambda item: str(item["username"]).lower())
        return entries

    def is_typing(self, room_id: int, user_id: int) -> bool:
        entry = self._entries.get(room_id, {}).get(user_id)
        return entry is not None and not self._is_expired(entry[1], self._clock())

    def active_rooms(self) -> list[int]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


class TypingManager:
    """Broadcast typing indicators to the other members of a room."""

    def __init__(self, store: TypingStatusStore, broadcaster: Broadcaster) -> None:
        self._store = store
        self._broadcaster = broadcaster

    @property
    def store(self) -> TypingStatusStore:
        return self._store

    async def start(self, room_id: int, user: UserProfile, *, source: Endpoint | None = None) -> None:
        self._store.start(room_id, user.id, user.username)
        payload = envelope(
            OutboundEvent.USER_TYPING,
            room_id=room_id,
            user_id=user.id,
            username=user.username,
        )
        await self._broadcaster.to_room(room_id, payload, exclude=source, exclude_user=user.id)

    async def stop(self, room_id: int, user_id: int, *, source: Endpoint | None = None) -> None:
        if not self._store.stop(room_id, user_id):
            return
        await self._announce_idle(room_id, user_id, source=source)

    async def clear_user(self, user_id: int, room_ids: set[int] | None = None) -> None:
        for room_id in self._store.clear_user(user_id, room_ids):
            await self._announce_idle(room_id, user_id)

    async def expire_stale(self) -> int:
        idle = self._store.expire()
        for room_id, user_id in idle:
            await self._announce_idle(room_id, user_id)
        if idle:
            logger.debug("Expired typing indicators in %d room(s)", len(idle))
        return len(idle)

    async def _announce_idle(self, room_id: int, user_id: int, *, source: Endpoint | None = None) -> None:
        payload = envelope(OutboundEvent.USER_STOPPED_TYPING, room_id=room_id, user_id=user_id)
        await self._broadcaster.to_room(room_id, payload, exclude=source)
