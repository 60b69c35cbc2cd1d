"""Presence-aware realtime chat fan-out for a single process."""

from .broadcast import Broadcaster  # noqa: F401
from .dispatcher import DispatchResult, MessageDispatcher, OutgoingMessage  # noqa: F401
from .errors import (  # noqa: F401
    AuthenticationError,
    AuthorizationError,
    CapacityError,
    ChatError,
    InvalidEventError,
    NotFoundError,
    PersistenceError,
    TransportError,
)
from .offline_queue import OfflineMessageQueue  # noqa: F401
from .presence import PresencePublisher  # noqa: F401
from .reconciler import SessionReconciler  # noqa: F401
from .registry import ConnectionRegistry, Endpoint  # noqa: F401
from .rooms import RoomMembershipIndex  # noqa: F401
from .service import ChatService  # noqa: F401
from .store import (  # noqa: F401
    Authenticator,
    ChatStore,
    MessageRecord,
    PresenceCache,
    RoomRecord,
    UserProfile,
)
from .typing_status import TypingManager, TypingStatusStore  # noqa: F401

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "Authenticator",
    "Broadcaster",
    "CapacityError",
    "ChatError",
    "ChatService",
    "ChatStore",
    "ConnectionRegistry",
    "DispatchResult",
    "Endpoint",
    "InvalidEventError",
    "MessageDispatcher",
    "MessageRecord",
    "NotFoundError",
    "OfflineMessageQueue",
    "OutgoingMessage",
    "PersistenceError",
    "PresenceCache",
    "PresencePublisher",
    "RoomMembershipIndex",
    "RoomRecord",
    "SessionReconciler",
    "TransportError",
    "TypingManager",
    "TypingStatusStore",
    "UserProfile",
]
