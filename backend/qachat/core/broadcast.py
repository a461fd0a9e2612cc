"""
Shared broadcast manager for realtime fan-out.

One Broadcaster instance per worker process. Every live WebSocket shares
its single backend connection through internal asyncio queues:

  Router / services -> publish(user:<id>) -> Redis -> Broadcaster -> N sockets

The memory:// backend is used for single-process deployments and tests.
"""
import logging
from typing import Optional

from broadcaster import Broadcast

from .config import settings

logger = logging.getLogger(__name__)

# Single broadcast instance per worker process
_broadcast: Optional[Broadcast] = None


def get_broadcast() -> Broadcast:
    """
    Get the shared broadcast instance.

    Raises:
        RuntimeError: If broadcast is not initialized (call connect_broadcast first)
    """
    if _broadcast is None:
        raise RuntimeError("Broadcast not initialized. Call connect_broadcast() during startup.")
    return _broadcast


def is_broadcast_initialized() -> bool:
    """
    Check if the broadcast instance is initialized.

    Used by health checks to verify the fan-out backend is ready.
    """
    return _broadcast is not None


async def connect_broadcast(url: Optional[str] = None) -> None:
    """
    Connect the shared Broadcaster.

    Call during application startup (in lifespan manager).
    """
    global _broadcast

    broadcast_url = url or settings.get_broadcast_url()
    _broadcast = Broadcast(broadcast_url)
    await _broadcast.connect()
    logger.info("[BROADCAST] Connected fan-out backend: %s", broadcast_url.split("@")[-1])


async def disconnect_broadcast() -> None:
    """
    Disconnect the shared Broadcaster.

    Call during application shutdown.
    """
    global _broadcast

    if _broadcast is not None:
        await _broadcast.disconnect()
        _broadcast = None
        logger.info("[BROADCAST] Disconnected fan-out backend")
