"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import (
    channels,
    contacts,
    conversations,
    health,
    messages,
    moderation,
    presence,
    prometheus,
    realtime,
)

__all__ = [
    "channels",
    "contacts",
    "conversations",
    "health",
    "messages",
    "moderation",
    "presence",
    "prometheus",
    "realtime",
]
