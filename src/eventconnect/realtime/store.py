"""Interfaces of the external collaborators used by the chat service.

The durable store owns rooms, participants and the message log; the
authenticator turns a credential into a user profile; the presence cache is a
short-lived key/value fallback for presence reads.  Implementations live in
the application layer (``app.services``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from app.models.enums import MessageType, ParticipantRole, RoomStatus, RoomType


@dataclass(slots=True, frozen=True)
class UserProfile:
    """Public identity attached to an endpoint."""

    id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "avatar_url": self.avatar_url,
        }


@dataclass(slots=True)
class RoomRecord:
    """Durable view of a room needed for authorization and fan-out."""

    id: int
    type: RoomType
    participant_ids: list[int]
    name: str | None = None
    description: str | None = None
    is_private: bool = False
    owner_id: int | None = None
    roles: dict[int, ParticipantRole] = field(default_factory=dict)
    status: RoomStatus = RoomStatus.ACTIVE
    settings: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == RoomStatus.ACTIVE

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def can_moderate(self, user_id: int) -> bool:
        if self.owner_id is not None and self.owner_id == user_id:
            return True
        return self.roles.get(user_id) in {ParticipantRole.MODERATOR, ParticipantRole.ADMIN}

    def can_invite(self, user_id: int) -> bool:
        if self.can_moderate(user_id):
            return True
        return self.type == RoomType.PRIVATE and self.has_participant(user_id)

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "is_private": self.is_private,
            "participants": list(self.participant_ids),
            "owner_id": self.owner_id,
        }


@dataclass(slots=True)
class MessageRecord:
    """A persisted chat message."""

    id: int
    room_id: int
    sender_id: int
    content: str
    message_type: MessageType
    created_at: datetime
    reply_to: int | None = None
    attachments: list[dict[str, Any]] = field(default_factory=list)
    read_by: list[int] = field(default_factory=list)

    def to_payload(self, sender: UserProfile | None = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "sender": sender.to_public() if sender is not None else {"id": self.sender_id},
            "content": self.content,
            "message_type": self.message_type.value,
            "reply_to": self.reply_to,
            "attachments": list(self.attachments),
            "created_at": self.created_at.isoformat(),
            "read_by": list(self.read_by),
        }


class ChatStore(Protocol):
    """Durable store consumed by the chat service.

    Lookups raise :class:`~eventconnect.realtime.errors.NotFoundError` for
    unknown rooms or messages; failed writes raise
    :class:`~eventconnect.realtime.errors.PersistenceError`.
    """

    async def get_room(self, room_id: int) -> RoomRecord: ...

    async def participants(self, room_id: int) -> list[int]: ...

    async def rooms_for_user(self, user_id: int) -> list[int]: ...

    async def append_message(
        self,
        room_id: int,
        sender_id: int,
        *,
        content: str,
        message_type: MessageType,
        reply_to: int | None,
        attachments: Sequence[dict[str, Any]],
    ) -> MessageRecord: ...

    async def update_last_activity(self, room_id: int, message: MessageRecord) -> None: ...

    async def mark_read(self, room_id: int, user_id: int, message_ids: Sequence[int]) -> list[int]: ...

    async def set_reaction(self, room_id: int, message_id: int, user_id: int, reaction: str) -> None: ...

    async def set_pinned(self, room_id: int, message_id: int, user_id: int, pinned: bool) -> None: ...

    async def search_messages(self, room_id: int, query: str, limit: int) -> list[MessageRecord]: ...

    async def create_room(
        self,
        owner_id: int,
        *,
        room_type: RoomType,
        participant_ids: Sequence[int],
        name: str | None,
        description: str | None,
        is_private: bool,
    ) -> RoomRecord: ...

    async def add_participant(self, room_id: int, user_id: int) -> bool: ...

    async def remove_participant(self, room_id: int, user_id: int) -> bool: ...

    async def update_settings(self, room_id: int, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def update_user_status(self, user_id: int, status: str) -> None: ...


class Authenticator(Protocol):
    """Verifies a connect credential."""

    async def authenticate(self, credential: str) -> UserProfile: ...


class PresenceCache(Protocol):
    """Short-TTL key/value store used as the presence fallback read path."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def close(self) -> None: ...
