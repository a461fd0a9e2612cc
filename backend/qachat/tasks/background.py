# backend/qachat/tasks/background.py
"""
In-process periodic jobs.

* Typing prune: drops typing indicators whose TTL elapsed without a stop
  and announces ``typing_stopped`` to the other participants.
* Mute sweep: clears timed mutes whose window closed and announces
  ``user_unmuted`` so clients drop their advisory mute state.

Both loops survive individual failures; a crashed iteration is logged and
the next one runs on schedule.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List

from sqlalchemy.orm import Session

from ..core.config import settings
from ..repositories.factory import RepositoryFactory
from ..services.messaging.hub import RealtimeHub
from ..services.messaging.publisher import publish_global
from ..services.moderation_service import ModerationService

logger = logging.getLogger(__name__)


Participants = Callable[[str], Awaitable[List[str]]]


def participants_loader(session_factory: Callable[[], Session]) -> Participants:
    """Resolve a conversation's participants on a worker thread with a short-lived session."""

    def _load(conversation_key: str) -> List[str]:
        db = session_factory()
        try:
            repo = RepositoryFactory.create_conversation_repository(db)
            conversation = repo.get_by_key(conversation_key)
            return repo.participant_ids(conversation) if conversation is not None else []
        finally:
            db.close()

    async def _resolve(conversation_key: str) -> List[str]:
        return await asyncio.to_thread(_load, conversation_key)

    return _resolve


async def typing_prune_loop(hub: RealtimeHub, interval: float, participants_for: Participants) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            expired = await hub.typing.expire(participants_for)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[TYPING] Prune failed")
            continue
        if expired:
            logger.debug(f"[TYPING] Announced {len(expired)} timed-out indicators")


async def run_mute_sweep(
    session_factory: Callable[[], Session],
    publish_all: Callable[[Dict[str, Any]], Awaitable[None]] = publish_global,
) -> List[str]:
    """One sweep pass with its own session."""
    db = session_factory()
    try:
        return await ModerationService(db, publish_all=publish_all).sweep_expired()
    finally:
        db.close()


async def mute_sweep_loop(session_factory: Callable[[], Session], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            cleared = await run_mute_sweep(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[MODERATION] Mute sweep failed")
            continue
        if cleared:
            logger.info(
                f"[MODERATION] Sweep unmuted {len(cleared)} users", extra={"user_ids": cleared}
            )


def start_background_tasks(
    hub: RealtimeHub, session_factory: Callable[[], Session]
) -> List["asyncio.Task[None]"]:
    tasks = [
        asyncio.create_task(
            typing_prune_loop(
                hub, settings.typing_prune_interval_seconds, participants_loader(session_factory)
            ),
            name="typing-prune",
        ),
        asyncio.create_task(
            mute_sweep_loop(session_factory, settings.mute_sweep_interval_seconds),
            name="mute-sweep",
        ),
    ]
    logger.info("Background tasks started: %s", ", ".join(t.get_name() for t in tasks))
    return tasks


async def stop_background_tasks(tasks: List["asyncio.Task[None]"]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
