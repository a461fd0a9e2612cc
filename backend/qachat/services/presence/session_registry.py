# backend/qachat/services/presence/session_registry.py
"""
Live connection registry.

Counts connections per identity so that several tabs of one user look like
a single presence. Only the net transitions (0 -> 1 and 1 -> 0) are
reported to listeners, exactly once each.

Also remembers which conversations each connection has joined; the gateway
uses that to route conversation-scoped events.

Counts are per process, so the server runs as a single worker
(``settings.web_concurrency`` refuses anything else).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

PresenceListener = Callable[[str, bool], None]


@dataclass
class ConnectionInfo:
    connection_id: str
    identity_id: str
    subscriptions: Set[str] = field(default_factory=set)


class SessionRegistry:
    """
    Thread-safe refcounted registry of live connections.

    Listeners are invoked while the registry lock is held so that the order
    in which they observe transitions for one identity matches the order the
    transitions happened. They must be quick and must not block.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._connections: Dict[str, ConnectionInfo] = {}
        self._counts: Dict[str, int] = {}
        self._listeners: List[PresenceListener] = []

    def add_listener(self, listener: PresenceListener) -> Callable[[], None]:
        """Register a transition listener; returns a handle that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def register(self, identity_id: str, connection_id: str) -> bool:
        """
        Record a live connection.

        Returns:
            True when this connection brought the identity online
        """
        with self._lock:
            if connection_id in self._connections:
                return False
            self._connections[connection_id] = ConnectionInfo(connection_id, identity_id)
            count = self._counts.get(identity_id, 0) + 1
            self._counts[identity_id] = count
            came_online = count == 1
            if came_online:
                self._notify(identity_id, True)
        logger.debug(
            "[PRESENCE] Registered connection",
            extra={"user_id": identity_id, "connection_id": connection_id, "count": count},
        )
        return came_online

    def unregister(self, connection_id: str) -> Optional[str]:
        """
        Drop a connection. Safe to call more than once for the same id.

        Returns:
            The identity id when this call took it offline, else None
        """
        with self._lock:
            info = self._connections.pop(connection_id, None)
            if info is None:
                return None
            identity_id = info.identity_id
            count = self._counts.get(identity_id, 0) - 1
            if count > 0:
                self._counts[identity_id] = count
                return None
            self._counts.pop(identity_id, None)
            self._notify(identity_id, False)
        logger.debug("[PRESENCE] Identity offline", extra={"user_id": identity_id})
        return identity_id

    def _notify(self, identity_id: str, online: bool) -> None:
        for listener in list(self._listeners):
            try:
                listener(identity_id, online)
            except Exception:
                logger.exception("[PRESENCE] Listener failed for %s", identity_id)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._connections

    def is_online(self, identity_id: str) -> bool:
        with self._lock:
            return self._counts.get(identity_id, 0) > 0

    def online_ids(self) -> Set[str]:
        with self._lock:
            return set(self._counts)

    def connection_count(self, identity_id: Optional[str] = None) -> int:
        with self._lock:
            if identity_id is None:
                return len(self._connections)
            return self._counts.get(identity_id, 0)

    def connections_for(self, identity_id: str) -> List[str]:
        with self._lock:
            return [
                conn_id
                for conn_id, info in self._connections.items()
                if info.identity_id == identity_id
            ]

    # Conversation subscriptions

    def subscribe(self, connection_id: str, conversation_key: str) -> bool:
        with self._lock:
            info = self._connections.get(connection_id)
            if info is None:
                return False
            info.subscriptions.add(conversation_key)
            return True

    def unsubscribe(self, connection_id: str, conversation_key: str) -> None:
        with self._lock:
            info = self._connections.get(connection_id)
            if info is not None:
                info.subscriptions.discard(conversation_key)

    def is_subscribed(self, connection_id: str, conversation_key: str) -> bool:
        with self._lock:
            info = self._connections.get(connection_id)
            return info is not None and conversation_key in info.subscriptions

    def subscriptions(self, connection_id: str) -> Set[str]:
        with self._lock:
            info = self._connections.get(connection_id)
            return set(info.subscriptions) if info else set()
