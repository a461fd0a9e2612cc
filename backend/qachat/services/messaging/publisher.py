# backend/qachat/services/messaging/publisher.py
"""
Publishing functions for realtime events.

Each user has one fan-out channel ``user:<id>``; every live socket of that
user subscribes to it, so publishing once reaches all of the user's tabs
across workers. Presence and moderation events go to the shared
``presence`` channel.

Publishing is best-effort: failures are logged and swallowed. Messages are
already committed when they are published, and clients recover missed
pushes through history gap fill.
"""

import json
import logging
from typing import Any, Dict, Iterable

from ...core.broadcast import get_broadcast
from ...core.constants import PRESENCE_CHANNEL
from ...monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


async def publish_to_channel(channel: str, event: Dict[str, Any]) -> bool:
    """
    Publish an event on a Broadcaster channel.

    Returns:
        True when the backend accepted the event
    """
    event_type = str(event.get("type", "unknown"))
    try:
        broadcast = get_broadcast()
        await broadcast.publish(channel=channel, message=json.dumps(event))
        logger.debug(f"[BROADCAST] Published {event_type} to {channel}")
        prometheus_metrics.record_event_published(event_type, "ok")
        return True
    except RuntimeError as e:
        # Broadcast not initialized
        logger.warning(f"[BROADCAST] Broadcast not initialized, cannot publish: {e}")
    except Exception as e:
        logger.error(f"[BROADCAST] Failed to publish to {channel}: {e}")
    prometheus_metrics.record_event_published(event_type, "error")
    return False


async def publish_to_user(user_id: str, event: Dict[str, Any]) -> None:
    """Publish an event to every live connection of one user."""
    await publish_to_channel(user_channel(user_id), event)


async def publish_to_users(user_ids: Iterable[str], event: Dict[str, Any]) -> None:
    """
    Publish an event to several users, once per distinct user.

    Args:
        user_ids: Recipient user ULIDs
        event: Event dict to publish
    """
    recipients = list(dict.fromkeys(str(uid) for uid in user_ids))
    for user_id in recipients:
        await publish_to_user(user_id, event)
    logger.debug(
        f"[BROADCAST] Published {event.get('type')} to {len(recipients)} users",
        extra={"event_type": event.get("type"), "recipients": len(recipients)},
    )


async def publish_global(event: Dict[str, Any]) -> None:
    """Publish presence and moderation events to every connected client."""
    await publish_to_channel(PRESENCE_CHANNEL, event)
