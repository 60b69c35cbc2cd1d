"""Publish online/offline transitions of users."""

from __future__ import annotations

import logging

from app.models.enums import PresenceStatus
from app.monitoring.metrics import realtime_presence_cache_errors_total

from .broadcast import Broadcaster
from .errors import ChatError
from .events import OutboundEvent, envelope
from .registry import ConnectionRegistry
from .store import ChatStore, PresenceCache


logger = logging.getLogger(__name__)


class PresencePublisher:
    """Fan out presence transitions and mirror them to the store and cache.

    Bound to :class:`~eventconnect.realtime.registry.ConnectionRegistry` as its
    transition callback.  Failures of the store or the cache never propagate.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        store: ChatStore,
        cache: PresenceCache,
        *,
        cache_ttl_seconds: int = 3600,
        namespace: str = "eventconnect",
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._store = store
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._namespace = namespace
        self._cache_warning_logged = False
        self._store_warning_logged = False

    def cache_key(self, user_id: int) -> str:
        return f"{self._namespace}:presence:user:{user_id}"

    async def __call__(self, user_id: int, status: PresenceStatus) -> None:
        await self.publish(user_id, status)

    async def publish(self, user_id: int, status: PresenceStatus) -> bool:
        """Announce *status* for *user_id*; return False when the transition is stale."""
        online = self._registry.is_online(user_id)
        if (status == PresenceStatus.ONLINE) != online:
            logger.debug("Dropping stale %s transition for user %s", status.value, user_id)
            return False

        payload = envelope(OutboundEvent.USER_STATUS_CHANGED, user_id=user_id, status=status.value)
        await self._broadcaster.to_all(payload, exclude_user=user_id)
        # A quicker opposite transition may have landed while broadcasting;
        # only the latest status is persisted.
        if (status == PresenceStatus.ONLINE) != self._registry.is_online(user_id):
            logger.debug("Not persisting superseded %s transition for user %s", status.value, user_id)
            return False
        await self._write_store(user_id, status)
        await self._write_cache(user_id, status)
        return True

    async def status_of(self, user_id: int) -> PresenceStatus:
        if self._registry.is_online(user_id):
            return PresenceStatus.ONLINE
        try:
            cached = await self._cache.get(self.cache_key(user_id))
        except Exception:
            realtime_presence_cache_errors_total.labels("get").inc()
            self._warn_cache("read")
            return PresenceStatus.OFFLINE
        if cached == PresenceStatus.ONLINE.value:
            return PresenceStatus.ONLINE
        return PresenceStatus.OFFLINE

    async def _write_store(self, user_id: int, status: PresenceStatus) -> None:
        try:
            await self._store.update_user_status(user_id, status.value)
        except ChatError as exc:
            if not self._store_warning_logged:
                logger.warning("Unable to persist presence of user %s: %s", user_id, exc)
                self._store_warning_logged = True
            return
        except Exception:
            logger.exception("Unexpected error while persisting presence of user %s", user_id)
            return
        self._store_warning_logged = False

    async def _write_cache(self, user_id: int, status: PresenceStatus) -> None:
        try:
            await self._cache.set(self.cache_key(user_id), status.value, self._cache_ttl)
        except Exception:
            realtime_presence_cache_errors_total.labels("set").inc()
            self._warn_cache("write")
            return
        self._cache_warning_logged = False

    def _warn_cache(self, operation: str) -> None:
        if self._cache_warning_logged:
            return
        logger.warning(
            "Presence cache unavailable during %s; falling back to live registry only",
            operation,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )
        self._cache_warning_logged = True
