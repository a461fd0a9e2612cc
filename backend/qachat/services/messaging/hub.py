# backend/qachat/services/messaging/hub.py
"""
Per-worker realtime state.

The hub owns the session registry, the presence tracker and the typing
coordinator for one worker process, and turns presence transitions into
``presence_delta`` broadcasts. It lives on ``app.state.hub``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ...monitoring.prometheus_metrics import prometheus_metrics
from ..presence import PresenceDelta, PresenceTracker, SessionRegistry
from ..typing_coordinator import TypingCoordinator
from .events import build_presence_delta_event
from .publisher import publish_global

logger = logging.getLogger(__name__)

PublishAll = Callable[[Dict[str, Any]], Awaitable[None]]


class RealtimeHub:
    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        typing: Optional[TypingCoordinator] = None,
        publish_all: PublishAll = publish_global,
    ):
        self.registry = registry if registry is not None else SessionRegistry()
        self.presence = PresenceTracker(self.registry)
        self.typing = typing if typing is not None else TypingCoordinator()
        self._publish_all = publish_all
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task[None]] = set()
        self._unsubscribe = self.presence.on_delta(self._on_delta)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Attach the event loop presence broadcasts are scheduled on."""
        self._loop = loop or asyncio.get_running_loop()

    def connect(self, identity_id: str, connection_id: str) -> bool:
        if self._loop is None:
            self.bind_loop()
        came_online = self.registry.register(identity_id, connection_id)
        prometheus_metrics.track_connection_opened()
        logger.info(
            f"[WS] Connection {connection_id} registered for {identity_id}",
            extra={"user_id": identity_id, "connection_id": connection_id},
        )
        return came_online

    def disconnect(self, connection_id: str) -> Optional[str]:
        """Idempotent; only the first call for a connection has any effect."""
        if connection_id not in self.registry:
            return None
        went_offline = self.registry.unregister(connection_id)
        prometheus_metrics.track_connection_closed()
        logger.info(f"[WS] Connection {connection_id} unregistered")
        return went_offline

    def _on_delta(self, delta: PresenceDelta) -> None:
        if not delta.online:
            self.typing.clear_identity(delta.user_id)
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("[PRESENCE] No loop bound; delta for %s not broadcast", delta.user_id)
            return
        loop.call_soon_threadsafe(self._spawn, delta)

    def _spawn(self, delta: PresenceDelta) -> None:
        task = asyncio.ensure_future(self._publish_delta(delta))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _publish_delta(self, delta: PresenceDelta) -> None:
        try:
            await self._publish_all(
                build_presence_delta_event(delta.user_id, delta.online, delta.version)
            )
        except Exception as e:
            # Presence heals on the next snapshot
            logger.warning(f"[PRESENCE] Failed to broadcast delta for {delta.user_id}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled presence broadcasts to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._unsubscribe()
        await self.drain()
        self.presence.close()
