"""Error taxonomy shared by the realtime chat components."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for failures reported back to the initiating endpoint."""

    code = "chat_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ChatError):
    """Missing, invalid or expired credential, or an inactive account."""

    code = "authentication_failed"


class CapacityError(ChatError):
    """The user already holds the maximum number of live endpoints."""

    code = "too_many_connections"


class AuthorizationError(ChatError):
    """The user is not a participant of the room or lacks the required role."""

    code = "forbidden"


class NotFoundError(ChatError):
    """A referenced room, message or user does not exist."""

    code = "not_found"


class PersistenceError(ChatError):
    """The durable store failed while writing."""

    code = "persistence_failed"


class TransportError(ChatError):
    """Delivery to a single live endpoint failed."""

    code = "transport_failed"


class InvalidEventError(ChatError):
    """An inbound payload does not match any known event shape."""

    code = "invalid_event"
