# backend/qachat/services/presence/tracker.py
"""
Presence tracker: versioned online/offline view over the session registry.

Each transition gets a version from one logical clock, so versions rise
monotonically per identity and a snapshot's version orders it against the
deltas. Clients keep the highest version they have seen per identity.
The clock is per process; see ``settings.web_concurrency``.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Dict, Iterable, List, Optional

from .session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresenceDelta:
    user_id: str
    online: bool
    version: int


@dataclass(frozen=True)
class PresenceSnapshot:
    online: List[str]
    versions: Dict[str, int]
    version: int


DeltaHandler = Callable[[PresenceDelta], None]


class PresenceTracker:
    def __init__(self, registry: SessionRegistry):
        self._registry = registry
        self._lock = threading.Lock()
        self._clock = 0
        self._versions: Dict[str, int] = {}
        self._handlers: List[DeltaHandler] = []
        self._detach = registry.add_listener(self._on_transition)

    def close(self) -> None:
        self._detach()

    def on_delta(self, handler: DeltaHandler) -> Callable[[], None]:
        """
        Subscribe to incremental presence changes.

        Returns:
            Callable that unsubscribes the handler
        """
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def _on_transition(self, identity_id: str, online: bool) -> None:
        with self._lock:
            self._clock += 1
            self._versions[identity_id] = self._clock
            delta = PresenceDelta(user_id=identity_id, online=online, version=self._clock)
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(delta)
            except Exception:
                logger.exception("[PRESENCE] Delta handler failed for %s", identity_id)

    def version_of(self, identity_id: str) -> int:
        with self._lock:
            return self._versions.get(identity_id, 0)

    def snapshot(self, scope: Optional[Iterable[str]] = None) -> PresenceSnapshot:
        """
        Online identities visible to a scope, with their versions.

        Args:
            scope: Identity ids the caller may see (channel members or a
                contact list). None means every online identity.
        """
        scope_ids = None if scope is None else {str(s) for s in scope}
        online = self._registry.online_ids()
        if scope_ids is not None:
            online &= scope_ids
        with self._lock:
            # Offline identities keep their last version so a stale
            # "online" delta cannot resurrect them on the client.
            versions = {
                uid: version
                for uid, version in self._versions.items()
                if scope_ids is None or uid in scope_ids
            }
            for uid in online:
                versions.setdefault(uid, 0)
            version = self._clock
        return PresenceSnapshot(online=sorted(online), versions=versions, version=version)
