"""Live endpoint bookkeeping per user."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.models.enums import PresenceStatus
from app.monitoring.metrics import realtime_connections, realtime_online_users

from .errors import CapacityError, TransportError
from .store import UserProfile


logger = logging.getLogger(__name__)

PresenceCallback = Callable[[int, PresenceStatus], Awaitable[None]]


@dataclass(eq=False)
class Endpoint:
    """One live websocket connection owned by a user."""

    user: UserProfile
    websocket: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[int] = field(default_factory=set)
    connected_at: float = field(default_factory=time.monotonic)
    # False until the socket is accepted and the offline queue replayed to it.
    active: bool = True

    @property
    def user_id(self) -> int:
        return self.user.id

    def is_alive(self) -> bool:
        """Whether the transport still reports an open connection."""
        states = (
            getattr(self.websocket, "client_state", None),
            getattr(self.websocket, "application_state", None),
        )
        return WebSocketState.DISCONNECTED not in states

    async def deliver(self, payload: dict[str, Any]) -> None:
        """Send *payload*, raising :class:`TransportError` when it cannot be delivered."""
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise TransportError(f"Endpoint {self.id} is not connected")
        try:
            await self.websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise TransportError(f"Failed to deliver to endpoint {self.id}") from exc

    async def send(self, payload: dict[str, Any]) -> bool:
        """Best-effort variant of :meth:`deliver` returning whether it succeeded."""
        try:
            await self.deliver(payload)
        except TransportError as exc:
            logger.debug("Failed to send websocket message: %s", exc)
            return False
        return True


class ConnectionRegistry:
    """Track live endpoints per user and report online/offline transitions."""

    def __init__(
        self,
        *,
        max_endpoints_per_user: int = 5,
        on_transition: PresenceCallback | None = None,
    ) -> None:
        self._max_endpoints = max_endpoints_per_user
        self._endpoints: dict[int, dict[str, Endpoint]] = {}
        self._on_transition = on_transition
        self._lock = asyncio.Lock()

    @property
    def max_endpoints_per_user(self) -> int:
        return self._max_endpoints

    def bind(self, on_transition: PresenceCallback | None) -> None:
        self._on_transition = on_transition

    async def register(self, endpoint: Endpoint) -> bool:
        """Add *endpoint*; return True when this brought its user online."""
        async with self._lock:
            bucket = self._endpoints.get(endpoint.user_id)
            if bucket is not None and endpoint.id in bucket:
                return False
            if bucket is not None and len(bucket) >= self._max_endpoints:
                raise CapacityError(
                    f"Too many simultaneous connections (limit {self._max_endpoints})"
                )
            came_online = not bucket
            self._endpoints.setdefault(endpoint.user_id, {})[endpoint.id] = endpoint
            online_users = len(self._endpoints)
        realtime_connections.labels("chat").inc()
        realtime_online_users.set(online_users)
        if came_online:
            await self._notify(endpoint.user_id, PresenceStatus.ONLINE)
        return came_online

    async def unregister(self, endpoint: Endpoint) -> bool:
        """Remove *endpoint*; return True when its user went offline."""
        async with self._lock:
            bucket = self._endpoints.get(endpoint.user_id)
            if not bucket or endpoint.id not in bucket:
                return False
            bucket.pop(endpoint.id)
            went_offline = not bucket
            if went_offline:
                self._endpoints.pop(endpoint.user_id, None)
            online_users = len(self._endpoints)
        realtime_connections.labels("chat").dec()
        realtime_online_users.set(online_users)
        if went_offline:
            await self._notify(endpoint.user_id, PresenceStatus.OFFLINE)
        return went_offline

    def is_online(self, user_id: int) -> bool:
        return bool(self._endpoints.get(user_id))

    def is_registered(self, endpoint: Endpoint) -> bool:
        return endpoint.id in self._endpoints.get(endpoint.user_id, {})

    def endpoints_for(self, user_id: int) -> list[Endpoint]:
        return list(self._endpoints.get(user_id, {}).values())

    def active_endpoints_for(self, user_id: int) -> list[Endpoint]:
        return [endpoint for endpoint in self._endpoints.get(user_id, {}).values() if endpoint.active]

    def primary_endpoint(self, user_id: int) -> Endpoint | None:
        """Most recently registered live endpoint of *user_id*."""
        bucket = self._endpoints.get(user_id)
        if not bucket:
            return None
        return next(reversed(bucket.values()))

    def all_endpoints(self) -> list[Endpoint]:
        return [endpoint for bucket in self._endpoints.values() for endpoint in bucket.values()]

    def online_user_ids(self) -> list[int]:
        return list(self._endpoints)

    @property
    def endpoint_count(self) -> int:
        return sum(len(bucket) for bucket in self._endpoints.values())

    def clear(self) -> None:
        self._endpoints.clear()
        realtime_connections.labels("chat").set(0)
        realtime_online_users.set(0)

    async def _notify(self, user_id: int, status: PresenceStatus) -> None:
        if self._on_transition is None:
            return
        try:
            await self._on_transition(user_id, status)
        except Exception:
            logger.exception("Presence transition handler failed for user %s (%s)", user_id, status.value)
