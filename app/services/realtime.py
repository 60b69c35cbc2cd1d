"""Wiring of the process-wide chat service."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings, get_settings
from app.database import SessionLocal
from eventconnect.realtime import ChatService, PresenceCache

from .auth import TokenAuthenticator
from .cache import create_presence_cache
from .chat_store import SQLAlchemyChatStore


def create_chat_service(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    cache: PresenceCache | None = None,
) -> ChatService:
    """Build a :class:`ChatService` from application settings."""

    settings = settings or get_settings()
    factory = session_factory or SessionLocal
    return ChatService(
        SQLAlchemyChatStore(factory),
        TokenAuthenticator(factory),
        cache if cache is not None else create_presence_cache(settings),
        max_endpoints_per_user=settings.chat_max_connections_per_user,
        offline_queue_limit=settings.chat_offline_queue_limit,
        typing_ttl_seconds=settings.chat_typing_ttl_seconds,
        reconcile_interval_seconds=settings.chat_reconcile_interval_seconds,
        presence_cache_ttl_seconds=settings.presence_cache_ttl_seconds,
        presence_cache_namespace=settings.presence_cache_namespace,
        search_max_limit=settings.chat_search_max_limit,
    )
