"""Closed set of inbound and outbound websocket events.

Every inbound frame is a JSON object tagged by ``type``; unknown types and
unknown fields are rejected before reaching a handler.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from app.models.enums import MessageType, RoomType

from .errors import InvalidEventError

MESSAGE_MAX_LENGTH = 5000
SEARCH_MAX_LIMIT = 100


class _Event(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class Attachment(_Event):
    """File or media reference carried by a message."""

    url: str = Field(..., min_length=1, max_length=2048)
    name: str | None = Field(default=None, max_length=255)
    mime_type: str | None = Field(default=None, max_length=128)
    size: int | None = Field(default=None, ge=0)


class RoomSettingsChanges(_Event):
    """Subset of room settings a moderator may change."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_private: bool | None = None
    notifications: dict[str, bool] | None = None
    privacy: dict[str, bool] | None = None
    moderation: dict[str, bool | int] | None = None

    @model_validator(mode="after")
    def ensure_any_change(self) -> "RoomSettingsChanges":
        if not self.model_fields_set:
            raise ValueError("At least one setting must be provided")
        return self


class JoinRoom(_Event):
    type: Literal["join_room"]
    room_id: int


class LeaveRoom(_Event):
    type: Literal["leave_room"]
    room_id: int


class SendMessage(_Event):
    type: Literal["send_message"]
    room_id: int
    content: str = Field(default="", max_length=MESSAGE_MAX_LENGTH)
    message_type: MessageType = MessageType.TEXT
    reply_to: int | None = None
    attachments: list[Attachment] = Field(default_factory=list, max_length=10)

    @model_validator(mode="after")
    def ensure_content(self) -> "SendMessage":
        if not self.content and not self.attachments:
            raise ValueError("Message must contain content or attachments")
        return self


class TypingStart(_Event):
    type: Literal["typing_start"]
    room_id: int


class TypingStop(_Event):
    type: Literal["typing_stop"]
    room_id: int


class MarkRead(_Event):
    type: Literal["mark_read"]
    room_id: int
    message_ids: list[int] = Field(..., min_length=1, max_length=500)


class ReactToMessage(_Event):
    type: Literal["react_to_message"]
    room_id: int
    message_id: int
    reaction: str = Field(..., min_length=1, max_length=32)


class PinMessage(_Event):
    type: Literal["pin_message"]
    room_id: int
    message_id: int
    pin: bool = True


class SearchMessages(_Event):
    type: Literal["search_messages"]
    room_id: int
    query: str = Field(..., min_length=1, max_length=200)
    limit: int = Field(default=50, ge=1, le=SEARCH_MAX_LIMIT)


class CreateRoom(_Event):
    type: Literal["create_room"]
    room_type: RoomType
    participant_ids: list[int] = Field(default_factory=list, max_length=500)
    name: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    is_private: bool = False

    @model_validator(mode="after")
    def check_shape(self) -> "CreateRoom":
        if self.room_type == RoomType.PRIVATE and len(set(self.participant_ids)) != 1:
            raise ValueError("Private rooms take exactly one other participant")
        if self.room_type == RoomType.GROUP and not self.name:
            raise ValueError("Group rooms require a name")
        return self


class InviteUser(_Event):
    type: Literal["invite_user"]
    room_id: int
    user_id: int


class RemoveUser(_Event):
    type: Literal["remove_user"]
    room_id: int
    user_id: int


class UpdateRoomSettings(_Event):
    type: Literal["update_chat_settings"]
    room_id: int
    settings: RoomSettingsChanges


class Ping(_Event):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        JoinRoom,
        LeaveRoom,
        SendMessage,
        TypingStart,
        TypingStop,
        MarkRead,
        ReactToMessage,
        PinMessage,
        SearchMessages,
        CreateRoom,
        InviteUser,
        RemoveUser,
        UpdateRoomSettings,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)

INBOUND_TYPES = frozenset(
    {
        "join_room",
        "leave_room",
        "send_message",
        "typing_start",
        "typing_stop",
        "mark_read",
        "react_to_message",
        "pin_message",
        "search_messages",
        "create_room",
        "invite_user",
        "remove_user",
        "update_chat_settings",
        "ping",
    }
)


def parse_inbound(raw: Any) -> InboundEvent:
    """Validate *raw* into one of the inbound event models."""

    if not isinstance(raw, dict):
        raise InvalidEventError("Event payload must be a JSON object")
    event_type = raw.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidEventError("Event type must be provided")
    if event_type not in INBOUND_TYPES:
        raise InvalidEventError(f"Unsupported event type '{event_type}'")
    try:
        return _inbound_adapter.validate_python(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != event_type)
        detail = first.get("msg", "Invalid payload")
        raise InvalidEventError(f"{location}: {detail}" if location else detail) from exc


class OutboundEvent(str, Enum):
    """Events the server emits to endpoints."""

    NEW_MESSAGE = "new_message"
    QUEUED_MESSAGE = "queued_message"
    USER_JOINED_CHAT = "user_joined_chat"
    USER_LEFT_CHAT = "user_left_chat"
    USER_TYPING = "user_typing"
    USER_STOPPED_TYPING = "user_stopped_typing"
    MESSAGES_READ = "messages_read"
    MESSAGE_REACTION = "message_reaction"
    MESSAGE_PIN_UPDATED = "message_pin_updated"
    USER_STATUS_CHANGED = "user_status_changed"
    SEARCH_RESULTS = "search_results"
    CHAT_CREATED = "chat_created"
    CHAT_CREATED_SUCCESS = "chat_created_success"
    INVITED_TO_CHAT = "invited_to_chat"
    USER_INVITED = "user_invited"
    USER_REMOVED = "user_removed"
    REMOVED_FROM_CHAT = "removed_from_chat"
    CHAT_SETTINGS_UPDATED = "chat_settings_updated"
    NOTIFICATION = "notification"
    CHAT_NOTIFICATION = "chat_notification"
    PONG = "pong"
    ERROR = "error"


def envelope(event: OutboundEvent, /, **fields: Any) -> dict[str, Any]:
    return {"type": event.value, **fields}
