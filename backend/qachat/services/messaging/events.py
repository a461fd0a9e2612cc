# backend/qachat/services/messaging/events.py
"""
Realtime event type definitions and builders.

All server events follow this structure:
{
    "type": str,           # Event type identifier
    "schema_version": int, # Schema version (currently 1)
    "timestamp": str,      # ISO 8601 timestamp
    "payload": dict        # Event-specific data
}
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ...core.timezone_utils import ensure_utc


class EventType(str, Enum):
    """Valid server-to-client event types."""

    MESSAGE_RECEIVED = "message_received"
    MESSAGE_READ = "message_read"
    TYPING_STARTED = "typing_started"
    TYPING_STOPPED = "typing_stopped"
    PRESENCE_DELTA = "presence_delta"
    PRESENCE_SNAPSHOT = "presence_snapshot"
    USER_MUTED = "user_muted"
    USER_UNMUTED = "user_unmuted"
    REACTION_UPDATED = "reaction_updated"
    SEND_ACK = "send_ack"
    SEND_REJECTED = "send_rejected"
    ERROR = "error"
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"


# Events scoped to one conversation; the gateway only forwards them to
# connections that joined that conversation.
CONVERSATION_SCOPED_EVENTS = frozenset(
    {
        EventType.TYPING_STARTED.value,
        EventType.TYPING_STOPPED.value,
    }
)

# Current schema version - increment when payload structure changes
SCHEMA_VERSION = 1


def _iso(dt: Optional[datetime]) -> Optional[str]:
    normalized = ensure_utc(dt)
    return normalized.isoformat() if normalized else None


def build_event(event_type: EventType, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a properly structured event.

    Args:
        event_type: The type of event
        payload: Event-specific payload data

    Returns:
        Complete event dict ready for publishing
    """
    return {
        "type": event_type.value,
        "schema_version": SCHEMA_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def group_reactions(reactions: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Collapse reaction rows into ``{emoji, count, user_ids}`` groups.

    The result depends only on the set of (user, emoji) pairs, not on the
    order they were written.
    """
    grouped: Dict[str, set[str]] = {}
    for reaction in reactions:
        grouped.setdefault(str(reaction.emoji), set()).add(str(reaction.user_id))
    return [
        {"emoji": emoji, "count": len(users), "user_ids": sorted(users)}
        for emoji, users in sorted(grouped.items())
    ]


def serialize_message(message: Any) -> Dict[str, Any]:
    """Wire form of a Message row (history pages and pushes share it)."""
    return {
        "id": int(message.id),
        "conversation_key": message.conversation_key,
        "sender_id": message.sender_id,
        "body": message.body,
        "created_at": _iso(message.created_at),
        "reply_to_id": message.reply_to_id,
        "client_id": message.client_id,
        "attachments": list(message.attachments or []),
        "reactions": group_reactions(message.reactions or []),
    }


def build_message_received_event(
    message: Any, client_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build a message_received event."""
    return build_event(
        EventType.MESSAGE_RECEIVED,
        {
            "conversation_key": message.conversation_key,
            "message": serialize_message(message),
            "client_id": client_id,
        },
    )


def build_message_read_event(
    conversation_key: str,
    user_id: str,
    last_read_message_id: int,
) -> Dict[str, Any]:
    """Build a message_read event."""
    return build_event(
        EventType.MESSAGE_READ,
        {
            "conversation_key": conversation_key,
            "user_id": user_id,
            "last_read_message_id": last_read_message_id,
        },
    )


def build_typing_event(
    conversation_key: str,
    user_id: str,
    is_typing: bool = True,
    ttl_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """Build a typing_started / typing_stopped event."""
    if is_typing:
        return build_event(
            EventType.TYPING_STARTED,
            {
                "conversation_key": conversation_key,
                "user_id": user_id,
                "ttl_seconds": ttl_seconds,
            },
        )
    return build_event(
        EventType.TYPING_STOPPED,
        {"conversation_key": conversation_key, "user_id": user_id},
    )


def build_presence_delta_event(user_id: str, online: bool, version: int) -> Dict[str, Any]:
    return build_event(
        EventType.PRESENCE_DELTA,
        {"user_id": user_id, "online": online, "version": version},
    )


def build_presence_snapshot_event(
    online: List[str], versions: Dict[str, int], version: int
) -> Dict[str, Any]:
    return build_event(
        EventType.PRESENCE_SNAPSHOT,
        {"online": online, "versions": versions, "version": version},
    )


def build_user_muted_event(
    user_id: str,
    muted_until: Optional[datetime],
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a user_muted event; muted_until None means indefinite."""
    return build_event(
        EventType.USER_MUTED,
        {"user_id": user_id, "muted_until": _iso(muted_until), "reason": reason},
    )


def build_user_unmuted_event(user_id: str) -> Dict[str, Any]:
    return build_event(EventType.USER_UNMUTED, {"user_id": user_id})


def build_reaction_updated_event(
    conversation_key: str,
    message_id: int,
    reactions: List[Dict[str, Any]],
    user_id: str,
    emoji: str,
    action: str,  # "added" or "removed"
) -> Dict[str, Any]:
    """Build a reaction_updated event carrying the full grouped state."""
    return build_event(
        EventType.REACTION_UPDATED,
        {
            "conversation_key": conversation_key,
            "message_id": message_id,
            "reactions": reactions,
            "user_id": user_id,
            "emoji": emoji,
            "action": action,
        },
    )


def build_send_ack_event(client_id: Optional[str], message: Any) -> Dict[str, Any]:
    return build_event(
        EventType.SEND_ACK,
        {
            "client_id": client_id,
            "message_id": int(message.id),
            "conversation_key": message.conversation_key,
        },
    )


def build_send_rejected_event(
    client_id: Optional[str], reason: str, message: str
) -> Dict[str, Any]:
    return build_event(
        EventType.SEND_REJECTED,
        {"client_id": client_id, "reason": reason, "message": message},
    )


def build_error_event(code: str, message: str) -> Dict[str, Any]:
    return build_event(EventType.ERROR, {"code": code, "message": message})


def build_connected_event(
    user_id: str, connection_id: str, heartbeat_interval: int
) -> Dict[str, Any]:
    return build_event(
        EventType.CONNECTED,
        {
            "user_id": user_id,
            "connection_id": connection_id,
            "heartbeat_interval": heartbeat_interval,
        },
    )


def build_heartbeat_event() -> Dict[str, Any]:
    return build_event(EventType.HEARTBEAT, {})
