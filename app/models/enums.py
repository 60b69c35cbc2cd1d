from __future__ import annotations

from enum import Enum


class RoomType(str, Enum):
    """Kinds of chat rooms."""

    PRIVATE = "private"
    GROUP = "group"
    EVENT = "event"
    TRIBE = "tribe"


class RoomStatus(str, Enum):
    """Lifecycle of a chat room."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"
    SUSPENDED = "suspended"


class ParticipantRole(str, Enum):
    """Roles a participant can hold inside a room."""

    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"


class MessageType(str, Enum):
    """Content kinds a chat message can carry."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LOCATION = "location"
    EVENT = "event"
    TRIBE = "tribe"


class AccountStatus(str, Enum):
    """Account state checked at authentication time."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class PresenceStatus(str, Enum):
    """Online indicator derived from live endpoints."""

    ONLINE = "online"
    OFFLINE = "offline"
