"""Periodic sweep removing endpoints whose transport died silently."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from app.monitoring.metrics import realtime_reconciled_endpoints_total

from .registry import ConnectionRegistry, Endpoint
from .typing_status import TypingManager


logger = logging.getLogger(__name__)


class SessionReconciler:
    """Run :meth:`run_once` every ``interval_seconds`` in a background task."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        on_dead: Callable[[Endpoint], Awaitable[None]],
        typing: TypingManager | None = None,
        interval_seconds: float = 300.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._registry = registry
        self._on_dead = on_dead
        self._typing = typing
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Drop dead endpoints and stale typing entries; return endpoints removed."""
        removed = 0
        for endpoint in self._registry.all_endpoints():
            if endpoint.is_alive():
                continue
            try:
                await self._on_dead(endpoint)
            except Exception:
                logger.exception("Failed to clean up dead endpoint %s of user %s", endpoint.id, endpoint.user_id)
                continue
            removed += 1
        if removed:
            realtime_reconciled_endpoints_total.inc(removed)
            logger.info("Session sweep removed %d dead endpoint(s)", removed)
        if self._typing is not None:
            await self._typing.expire_stale()
        return removed

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="chat-session-reconciler")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Session sweep failed")
