"""The chat service owning every realtime component of one process."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict

from app.monitoring.metrics import realtime_event_errors_total, realtime_events_total

from . import events as ev
from .broadcast import Broadcaster
from .dispatcher import DispatchResult, MessageDispatcher, OutgoingMessage
from .errors import AuthenticationError, AuthorizationError, ChatError, NotFoundError
from .events import OutboundEvent, envelope, parse_inbound
from .offline_queue import OfflineMessageQueue
from .presence import PresencePublisher
from .reconciler import SessionReconciler
from .registry import ConnectionRegistry, Endpoint
from .rooms import RoomMembershipIndex
from .store import Authenticator, ChatStore, PresenceCache, RoomRecord
from .typing_status import TypingManager, TypingStatusStore


logger = logging.getLogger(__name__)

Handler = Callable[[Endpoint, Any], Awaitable[None]]


class ChatService:
    """Route validated client events to the realtime components.

    One instance is created per process and shared by every websocket
    handler.  Errors raised while handling an event are reported to the
    initiating endpoint only.
    """

    def __init__(
        self,
        store: ChatStore,
        authenticator: Authenticator,
        cache: PresenceCache,
        *,
        max_endpoints_per_user: int = 5,
        offline_queue_limit: int = 100,
        typing_ttl_seconds: float = 10.0,
        reconcile_interval_seconds: float = 300.0,
        presence_cache_ttl_seconds: int = 3600,
        presence_cache_namespace: str = "eventconnect",
        search_max_limit: int = 100,
    ) -> None:
        self.store = store
        self.authenticator = authenticator
        self.cache = cache
        self.registry = ConnectionRegistry(max_endpoints_per_user=max_endpoints_per_user)
        self.rooms = RoomMembershipIndex()
        self.broadcaster = Broadcaster(self.registry, self.rooms)
        self.typing = TypingManager(TypingStatusStore(typing_ttl_seconds), self.broadcaster)
        self.queue = OfflineMessageQueue(self.registry, max_messages=offline_queue_limit)
        self.presence = PresencePublisher(
            self.registry,
            self.broadcaster,
            store,
            cache,
            cache_ttl_seconds=presence_cache_ttl_seconds,
            namespace=presence_cache_namespace,
        )
        self.registry.bind(self.presence)
        self.dispatcher = MessageDispatcher(store, self.registry, self.queue)
        self.reconciler = SessionReconciler(
            self.registry,
            on_dead=self.disconnect,
            typing=self.typing,
            interval_seconds=reconcile_interval_seconds,
        )
        self._search_max_limit = search_max_limit
        self._handlers: Dict[str, Handler] = {
            "join_room": self._on_join_room,
            "leave_room": self._on_leave_room,
            "send_message": self._on_send_message,
            "typing_start": self._on_typing_start,
            "typing_stop": self._on_typing_stop,
            "mark_read": self._on_mark_read,
            "react_to_message": self._on_react,
            "pin_message": self._on_pin,
            "search_messages": self._on_search,
            "create_room": self._on_create_room,
            "invite_user": self._on_invite,
            "remove_user": self._on_remove,
            "update_chat_settings": self._on_update_settings,
            "ping": self._on_ping,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.reconciler.start()

    async def close(self) -> None:
        await self.reconciler.stop()
        self.registry.clear()
        self.rooms.clear()
        self.typing.store.clear()
        self.queue.clear()
        try:
            await self.cache.close()
        except Exception:
            logger.warning("Failed to close presence cache", exc_info=logger.isEnabledFor(logging.DEBUG))

    async def connect(self, credential: str | None, websocket: Any) -> Endpoint:
        """Authenticate *credential* and register a new endpoint for *websocket*.

        Raises :class:`AuthenticationError` or :class:`CapacityError`; nothing
        is registered when either is raised.
        """
        if not credential:
            raise AuthenticationError("Missing credential")
        user = await self.authenticator.authenticate(credential)
        endpoint = Endpoint(user=user, websocket=websocket, active=False)
        await self.registry.register(endpoint)
        logger.debug("User %s connected with endpoint %s", user.id, endpoint.id)
        return endpoint

    async def activate(self, endpoint: Endpoint) -> None:
        """Join the endpoint to the user's rooms and replay queued messages."""
        try:
            room_ids = await self.store.rooms_for_user(endpoint.user_id)
        except ChatError as exc:
            logger.warning("Unable to load rooms of user %s: %s", endpoint.user_id, exc)
            room_ids = []
        endpoint.rooms.update(room_ids)
        self.rooms.hydrate(endpoint.user_id, room_ids)
        await self._replay_queue(endpoint)

    async def _replay_queue(self, endpoint: Endpoint) -> None:
        # Messages sent while the replay runs are queued too, so the endpoint
        # only goes live once its queue is drained.
        while self.queue.size(endpoint.user_id):
            if not await self.queue.flush(endpoint.user_id, endpoint):
                break
        endpoint.active = True

    async def disconnect(self, endpoint: Endpoint) -> None:
        if not self.registry.is_registered(endpoint):
            return
        user_id = endpoint.user_id
        left = self._release_rooms(endpoint, set(endpoint.rooms))
        went_offline = await self.registry.unregister(endpoint)
        if went_offline:
            await self.typing.clear_user(user_id)
        elif left:
            await self.typing.clear_user(user_id, left)
        logger.debug("Endpoint %s of user %s disconnected", endpoint.id, user_id)

    def _release_rooms(self, endpoint: Endpoint, room_ids: set[int]) -> set[int]:
        """Drop *room_ids* from *endpoint*; return the rooms its user no longer holds."""
        endpoint.rooms.difference_update(room_ids)
        others = [
            other for other in self.registry.endpoints_for(endpoint.user_id) if other is not endpoint
        ]
        left: set[int] = set()
        for room_id in room_ids:
            if any(room_id in other.rooms for other in others):
                continue
            if self.rooms.leave(room_id, endpoint.user_id):
                left.add(room_id)
        return left

    def _join_user(self, user_id: int, room_id: int) -> bool:
        for endpoint in self.registry.endpoints_for(user_id):
            endpoint.rooms.add(room_id)
        if not self.registry.is_online(user_id):
            return False
        return self.rooms.join(room_id, user_id)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def handle(self, endpoint: Endpoint, raw: Any) -> None:
        event_type = raw.get("type") if isinstance(raw, dict) else None
        try:
            event = parse_inbound(raw)
            realtime_events_total.labels("chat", "in", event.type).inc()
            await self._handlers[event.type](endpoint, event)
        except ChatError as exc:
            realtime_event_errors_total.labels(exc.code).inc()
            logger.debug("Rejected %s from user %s: %s", event_type, endpoint.user_id, exc)
            await endpoint.send(
                envelope(OutboundEvent.ERROR, code=exc.code, detail=exc.message, event=event_type)
            )
        except Exception:
            realtime_event_errors_total.labels("internal_error").inc()
            logger.exception("Unexpected error while handling %s from user %s", event_type, endpoint.user_id)
            await endpoint.send(
                envelope(
                    OutboundEvent.ERROR,
                    code="internal_error",
                    detail="Unexpected server error",
                    event=event_type,
                )
            )

    async def _require_participant(self, room_id: int, user_id: int) -> RoomRecord:
        return await self.dispatcher.authorize(room_id, user_id)

    async def _require_moderator(self, room_id: int, user_id: int) -> RoomRecord:
        room = await self._require_participant(room_id, user_id)
        if not room.can_moderate(user_id):
            raise AuthorizationError("Only the owner or a moderator can do this")
        return room

    async def _on_join_room(self, endpoint: Endpoint, event: ev.JoinRoom) -> None:
        await self._require_participant(event.room_id, endpoint.user_id)
        endpoint.rooms.add(event.room_id)
        if self.rooms.join(event.room_id, endpoint.user_id):
            await self.broadcaster.to_room(
                event.room_id,
                envelope(OutboundEvent.USER_JOINED_CHAT, room_id=event.room_id, user=endpoint.user.to_public()),
                exclude_user=endpoint.user_id,
            )

    async def _on_leave_room(self, endpoint: Endpoint, event: ev.LeaveRoom) -> None:
        if event.room_id not in endpoint.rooms:
            return
        if not self._release_rooms(endpoint, {event.room_id}):
            return
        await self.typing.stop(event.room_id, endpoint.user_id)
        await self.broadcaster.to_room(
            event.room_id,
            envelope(OutboundEvent.USER_LEFT_CHAT, room_id=event.room_id, user_id=endpoint.user_id),
        )

    async def _on_send_message(self, endpoint: Endpoint, event: ev.SendMessage) -> None:
        await self.send_message(
            endpoint,
            event.room_id,
            OutgoingMessage(
                content=event.content,
                message_type=event.message_type,
                reply_to=event.reply_to,
                attachments=[attachment.model_dump(exclude_none=True) for attachment in event.attachments],
            ),
        )

    async def send_message(self, endpoint: Endpoint, room_id: int, message: OutgoingMessage) -> DispatchResult:
        result = await self.dispatcher.dispatch(room_id, endpoint.user, message)
        await self.typing.stop(room_id, endpoint.user_id, source=endpoint)
        return result

    async def _on_typing_start(self, endpoint: Endpoint, event: ev.TypingStart) -> None:
        if not self.rooms.is_member(event.room_id, endpoint.user_id):
            raise AuthorizationError(f"Join chat {event.room_id} before typing in it")
        await self.typing.start(event.room_id, endpoint.user, source=endpoint)

    async def _on_typing_stop(self, endpoint: Endpoint, event: ev.TypingStop) -> None:
        await self.typing.stop(event.room_id, endpoint.user_id, source=endpoint)

    async def _on_mark_read(self, endpoint: Endpoint, event: ev.MarkRead) -> None:
        await self._require_participant(event.room_id, endpoint.user_id)
        marked = await self.store.mark_read(event.room_id, endpoint.user_id, event.message_ids)
        if not marked:
            return
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.MESSAGES_READ,
                room_id=event.room_id,
                user_id=endpoint.user_id,
                message_ids=marked,
            ),
        )

    async def _on_react(self, endpoint: Endpoint, event: ev.ReactToMessage) -> None:
        await self._require_participant(event.room_id, endpoint.user_id)
        await self.store.set_reaction(event.room_id, event.message_id, endpoint.user_id, event.reaction)
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.MESSAGE_REACTION,
                room_id=event.room_id,
                message_id=event.message_id,
                user_id=endpoint.user_id,
                reaction=event.reaction,
            ),
        )

    async def _on_pin(self, endpoint: Endpoint, event: ev.PinMessage) -> None:
        await self._require_moderator(event.room_id, endpoint.user_id)
        await self.store.set_pinned(event.room_id, event.message_id, endpoint.user_id, event.pin)
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.MESSAGE_PIN_UPDATED,
                room_id=event.room_id,
                message_id=event.message_id,
                pinned=event.pin,
                user_id=endpoint.user_id,
            ),
        )

    async def _on_search(self, endpoint: Endpoint, event: ev.SearchMessages) -> None:
        await self._require_participant(event.room_id, endpoint.user_id)
        limit = min(event.limit, self._search_max_limit)
        results = await self.store.search_messages(event.room_id, event.query, limit)
        await endpoint.send(
            envelope(
                OutboundEvent.SEARCH_RESULTS,
                room_id=event.room_id,
                query=event.query,
                messages=[record.to_payload() for record in results],
            )
        )

    async def _on_create_room(self, endpoint: Endpoint, event: ev.CreateRoom) -> None:
        creator = endpoint.user
        room = await self.store.create_room(
            creator.id,
            room_type=event.room_type,
            participant_ids=[user_id for user_id in event.participant_ids if user_id != creator.id],
            name=event.name,
            description=event.description,
            is_private=event.is_private,
        )
        for user_id in room.participant_ids:
            self._join_user(user_id, room.id)
        public = room.to_public()
        for user_id in room.participant_ids:
            if user_id == creator.id:
                continue
            await self.broadcaster.to_user(
                user_id,
                envelope(OutboundEvent.CHAT_CREATED, room=public, created_by=creator.to_public()),
            )
        await endpoint.send(envelope(OutboundEvent.CHAT_CREATED_SUCCESS, room=public))

    async def _on_invite(self, endpoint: Endpoint, event: ev.InviteUser) -> None:
        room = await self._require_participant(event.room_id, endpoint.user_id)
        if not room.can_invite(endpoint.user_id):
            raise AuthorizationError("You are not allowed to invite users to this chat")
        if not await self.store.add_participant(event.room_id, event.user_id):
            return
        room = await self.store.get_room(event.room_id)
        self._join_user(event.user_id, event.room_id)
        inviter = endpoint.user.to_public()
        await self.broadcaster.to_user(
            event.user_id,
            envelope(OutboundEvent.INVITED_TO_CHAT, room=room.to_public(), invited_by=inviter),
        )
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.USER_INVITED,
                room_id=event.room_id,
                user_id=event.user_id,
                invited_by=inviter,
            ),
            exclude_user=event.user_id,
        )

    async def _on_remove(self, endpoint: Endpoint, event: ev.RemoveUser) -> None:
        room = await self._require_moderator(event.room_id, endpoint.user_id)
        if room.owner_id == event.user_id:
            raise AuthorizationError("The owner cannot be removed from the chat")
        if not await self.store.remove_participant(event.room_id, event.user_id):
            raise NotFoundError(f"User {event.user_id} is not a participant of chat {event.room_id}")
        for target in self.registry.endpoints_for(event.user_id):
            target.rooms.discard(event.room_id)
        self.rooms.leave(event.room_id, event.user_id)
        await self.typing.stop(event.room_id, event.user_id)
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.USER_REMOVED,
                room_id=event.room_id,
                user_id=event.user_id,
                removed_by=endpoint.user_id,
            ),
        )
        await self.broadcaster.to_user(
            event.user_id,
            envelope(OutboundEvent.REMOVED_FROM_CHAT, room_id=event.room_id, removed_by=endpoint.user_id),
        )

    async def _on_update_settings(self, endpoint: Endpoint, event: ev.UpdateRoomSettings) -> None:
        await self._require_moderator(event.room_id, endpoint.user_id)
        settings = await self.store.update_settings(
            event.room_id, event.settings.model_dump(exclude_unset=True)
        )
        await self.broadcaster.to_room(
            event.room_id,
            envelope(
                OutboundEvent.CHAT_SETTINGS_UPDATED,
                room_id=event.room_id,
                settings=settings,
                updated_by=endpoint.user_id,
            ),
        )

    async def _on_ping(self, endpoint: Endpoint, event: ev.Ping) -> None:
        await endpoint.send(envelope(OutboundEvent.PONG, timestamp=time.time()))

    # ------------------------------------------------------------------
    # Server initiated
    # ------------------------------------------------------------------

    async def notify_user(self, user_id: int, notification: dict[str, Any]) -> int:
        return await self.broadcaster.to_user(
            user_id, envelope(OutboundEvent.NOTIFICATION, notification=notification)
        )

    async def notify_room(
        self, room_id: int, notification: dict[str, Any], *, exclude_user: int | None = None
    ) -> int:
        return await self.broadcaster.to_room(
            room_id,
            envelope(OutboundEvent.CHAT_NOTIFICATION, room_id=room_id, notification=notification),
            exclude_user=exclude_user,
        )

    async def broadcast(self, payload: dict[str, Any]) -> int:
        return await self.broadcaster.to_all(payload)

    def connected_users_count(self) -> int:
        return len(self.registry.online_user_ids())

    def room_members(self, room_id: int) -> list[int]:
        return sorted(self.rooms.members_of(room_id))

    def is_user_online(self, user_id: int) -> bool:
        return self.registry.is_online(user_id)
