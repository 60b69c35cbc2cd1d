"""Fan-out helpers addressing endpoints, users, rooms or everyone."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from app.monitoring.metrics import realtime_delivery_failures_total, realtime_events_total

from .errors import TransportError
from .registry import ConnectionRegistry, Endpoint
from .rooms import RoomMembershipIndex


logger = logging.getLogger(__name__)


class Broadcaster:
    """Deliver payloads to live endpoints selected from the registry and room index."""

    def __init__(self, registry: ConnectionRegistry, rooms: RoomMembershipIndex) -> None:
        self._registry = registry
        self._rooms = rooms

    async def to_endpoints(
        self,
        endpoints: Iterable[Endpoint],
        payload: dict[str, Any],
        *,
        exclude: Endpoint | None = None,
    ) -> int:
        delivered = 0
        event = str(payload.get("type", "message"))
        for endpoint in list(endpoints):
            if endpoint is exclude or not endpoint.active:
                continue
            try:
                await endpoint.deliver(payload)
            except TransportError as exc:
                realtime_delivery_failures_total.labels(event).inc()
                logger.debug("Dropped %s for endpoint %s: %s", event, endpoint.id, exc)
                continue
            delivered += 1
        realtime_events_total.labels("chat", "out", event).inc()
        return delivered

    async def to_user(self, user_id: int, payload: dict[str, Any]) -> int:
        return await self.to_endpoints(self._registry.endpoints_for(user_id), payload)

    async def to_room(
        self,
        room_id: int,
        payload: dict[str, Any],
        *,
        exclude: Endpoint | None = None,
        exclude_user: int | None = None,
    ) -> int:
        """Send to endpoints that joined *room_id* on this process."""
        targets = [
            endpoint
            for user_id in self._rooms.members_of(room_id)
            if user_id != exclude_user
            for endpoint in self._registry.endpoints_for(user_id)
            if room_id in endpoint.rooms
        ]
        return await self.to_endpoints(targets, payload, exclude=exclude)

    async def to_all(self, payload: dict[str, Any], *, exclude_user: int | None = None) -> int:
        targets = [
            endpoint
            for endpoint in self._registry.all_endpoints()
            if endpoint.user_id != exclude_user
        ]
        return await self.to_endpoints(targets, payload)
