"""Bounded per-user queue of messages addressed to offline users."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict

from app.monitoring.metrics import realtime_offline_queue_evictions_total, realtime_offline_queue_messages

from .errors import TransportError
from .events import OutboundEvent, envelope
from .registry import ConnectionRegistry, Endpoint


logger = logging.getLogger(__name__)


class OfflineMessageQueue:
    """FIFO of message payloads per user, oldest entry evicted when full.

    The queue is consulted only when a user connects: :meth:`flush` replays it
    to the user's primary endpoint.
    """

    def __init__(self, registry: ConnectionRegistry, *, max_messages: int = 100) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        self._registry = registry
        self._max_messages = max_messages
        self._queues: Dict[int, Deque[dict[str, Any]]] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def enqueue(self, user_id: int, message: dict[str, Any]) -> None:
        queue = self._queues.get(user_id)
        if queue is None:
            queue = self._queues[user_id] = deque(maxlen=self._max_messages)
        if len(queue) == self._max_messages:
            realtime_offline_queue_evictions_total.inc()
            logger.debug("Offline queue for user %s is full; dropping oldest message", user_id)
        queue.append(message)
        self._update_gauge()

    def pending(self, user_id: int) -> list[dict[str, Any]]:
        return list(self._queues.get(user_id, ()))

    def size(self, user_id: int) -> int:
        return len(self._queues.get(user_id, ()))

    @property
    def total(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    def discard(self, user_id: int) -> None:
        if self._queues.pop(user_id, None) is not None:
            self._update_gauge()

    def clear(self) -> None:
        self._queues.clear()
        self._update_gauge()

    async def flush(self, user_id: int, endpoint: Endpoint | None = None) -> int:
        """Replay queued messages to *endpoint*, by default the primary endpoint of *user_id*.

        Returns the number of messages delivered.  Nothing happens while the
        user is offline.  When a delivery fails the undelivered messages stay
        queued, in order.
        """
        if not self._registry.is_online(user_id):
            return 0
        queue = self._queues.pop(user_id, None)
        if not queue:
            return 0
        if endpoint is None:
            endpoint = self._registry.primary_endpoint(user_id)
        delivered = 0
        try:
            while queue:
                if endpoint is None:
                    raise TransportError(f"User {user_id} has no live endpoint")
                await endpoint.deliver(envelope(OutboundEvent.QUEUED_MESSAGE, message=queue[0]))
                queue.popleft()
                delivered += 1
        except TransportError as exc:
            logger.info(
                "Offline queue flush for user %s stopped after %d message(s): %s",
                user_id,
                delivered,
                exc,
            )
            self._restore(user_id, queue)
        self._update_gauge()
        return delivered

    def _restore(self, user_id: int, remaining: Deque[dict[str, Any]]) -> None:
        # Messages enqueued while the flush was suspended go after the undelivered tail.
        newer = self._queues.pop(user_id, None)
        queue: Deque[dict[str, Any]] = deque(remaining, maxlen=self._max_messages)
        if newer:
            queue.extend(newer)
        self._queues[user_id] = queue

    def _update_gauge(self) -> None:
        realtime_offline_queue_messages.set(self.total)
