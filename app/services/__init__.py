"""Application service helpers."""

from .auth import TokenAuthenticator
from .cache import InMemoryPresenceCache, RedisPresenceCache, create_presence_cache
from .chat_store import SQLAlchemyChatStore
from .realtime import create_chat_service

__all__ = [
    "TokenAuthenticator",
    "InMemoryPresenceCache",
    "RedisPresenceCache",
    "create_presence_cache",
    "SQLAlchemyChatStore",
    "create_chat_service",
]
