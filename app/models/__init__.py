"""Database models package."""

from .base import Base
from .chat import (
    Chat,
    ChatMessage,
    ChatParticipant,
    MessageReaction,
    MessageRead,
    PinnedMessage,
    User,
    default_room_settings,
)
from .enums import (
    AccountStatus,
    MessageType,
    ParticipantRole,
    PresenceStatus,
    RoomStatus,
    RoomType,
)

__all__ = [
    "Base",
    "User",
    "Chat",
    "ChatParticipant",
    "ChatMessage",
    "MessageRead",
    "MessageReaction",
    "PinnedMessage",
    "default_room_settings",
    "AccountStatus",
    "MessageType",
    "ParticipantRole",
    "PresenceStatus",
    "RoomStatus",
    "RoomType",
]
