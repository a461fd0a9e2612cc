"""Presence: live connection refcounting and versioned online state."""

from .session_registry import ConnectionInfo, SessionRegistry
from .tracker import PresenceDelta, PresenceSnapshot, PresenceTracker

__all__ = [
    "ConnectionInfo",
    "PresenceDelta",
    "PresenceSnapshot",
    "PresenceTracker",
    "SessionRegistry",
]
