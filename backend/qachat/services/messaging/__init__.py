"""
Realtime messaging package.

- events: server event types and envelope builders
- publisher: Broadcaster fan-out to per-user and global channels
- hub: per-worker presence and typing state
- gateway: the WebSocket session loop
"""

from .events import SCHEMA_VERSION, EventType, build_event
from .publisher import publish_global, publish_to_user, publish_to_users

__all__ = [
    "EventType",
    "SCHEMA_VERSION",
    "build_event",
    "publish_global",
    "publish_to_user",
    "publish_to_users",
]
