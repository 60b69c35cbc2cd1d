"""Persist a room message and fan it out to the room's participants."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Sequence

from app.models.enums import MessageType
from app.monitoring.metrics import realtime_delivery_failures_total, realtime_events_total

from .errors import AuthorizationError, ChatError, PersistenceError, TransportError
from .events import OutboundEvent, envelope
from .offline_queue import OfflineMessageQueue
from .registry import ConnectionRegistry
from .store import ChatStore, RoomRecord, UserProfile


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OutgoingMessage:
    """Validated content of a ``send_message`` event."""

    content: str
    message_type: MessageType = MessageType.TEXT
    reply_to: int | None = None
    attachments: Sequence[dict[str, Any]] = ()


@dataclass(slots=True)
class DispatchResult:
    message: dict[str, Any]
    delivered: int = 0
    queued: int = 0
    failed: int = 0


class MessageDispatcher:
    """Authorize, persist, deliver or queue.

    Dispatches into the same room are serialised so that the order in which
    messages are persisted is also the order in which they are fanned out.
    """

    def __init__(
        self,
        store: ChatStore,
        registry: ConnectionRegistry,
        queue: OfflineMessageQueue,
    ) -> None:
        self._store = store
        self._registry = registry
        self._queue = queue
        self._room_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, room_id: int) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[room_id] = lock
        return lock

    async def authorize(self, room_id: int, user_id: int) -> RoomRecord:
        """Return the room when *user_id* may post into it."""
        room = await self._store.get_room(room_id)
        if not room.is_active:
            raise AuthorizationError(f"Chat {room_id} is {room.status.value}")
        if not room.has_participant(user_id):
            raise AuthorizationError(f"User {user_id} is not a participant of chat {room_id}")
        return room

    async def dispatch(self, room_id: int, sender: UserProfile, message: OutgoingMessage) -> DispatchResult:
        lock = self._lock_for(room_id)
        async with lock:
            room = await self.authorize(room_id, sender.id)
            try:
                record = await self._store.append_message(
                    room_id,
                    sender.id,
                    content=message.content,
                    message_type=message.message_type,
                    reply_to=message.reply_to,
                    attachments=list(message.attachments),
                )
            except ChatError:
                raise
            except Exception as exc:
                logger.exception("Failed to persist message from user %s in chat %s", sender.id, room_id)
                raise PersistenceError(f"Unable to store message in chat {room_id}") from exc

            payload = record.to_payload(sender)
            result = DispatchResult(message=payload)
            event = envelope(OutboundEvent.NEW_MESSAGE, message=payload)
            for user_id in dict.fromkeys(room.participant_ids):
                endpoints = self._registry.active_endpoints_for(user_id)
                if not endpoints:
                    self._queue.enqueue(user_id, payload)
                    result.queued += 1
                    continue
                for endpoint in endpoints:
                    try:
                        await endpoint.deliver(event)
                    except TransportError as exc:
                        result.failed += 1
                        realtime_delivery_failures_total.labels(OutboundEvent.NEW_MESSAGE.value).inc()
                        logger.info("Delivery of message %s to endpoint %s failed: %s", record.id, endpoint.id, exc)
                        continue
                    result.delivered += 1
            realtime_events_total.labels("chat", "out", OutboundEvent.NEW_MESSAGE.value).inc()

            try:
                await self._store.update_last_activity(room_id, record)
            except Exception:
                logger.warning(
                    "Unable to update last activity of chat %s",
                    room_id,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
        return result
