# backend/qachat/services/typing_coordinator.py
"""
Typing coordinator.

Typing state lives in memory only. Every start refreshes a deadline of
``now + ttl``; entries past their deadline are treated as gone whether or not
a stop ever arrives. ``prune`` drops them silently; ``expire`` drops them and
announces the stop. Broadcasts are best-effort.
"""

import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.config import settings
from .messaging.events import build_typing_event
from .messaging.publisher import publish_to_users

logger = logging.getLogger(__name__)

Publish = Callable[[Iterable[str], dict], Awaitable[None]]


class TypingCoordinator:
    def __init__(
        self,
        publish: Publish = publish_to_users,
        clock: Callable[[], float] = time.monotonic,
        ttl_seconds: Optional[float] = None,
    ):
        self._publish = publish
        self._clock = clock
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else settings.typing_ttl_seconds)
        self._expires: Dict[Tuple[str, str], float] = {}

    def record_start(self, conversation_key: str, identity_id: str) -> float:
        expires_at = self._clock() + self.ttl_seconds
        self._expires[(conversation_key, identity_id)] = expires_at
        return expires_at

    def record_stop(self, conversation_key: str, identity_id: str) -> bool:
        """Remove the entry; True if it was still live."""
        expires_at = self._expires.pop((conversation_key, identity_id), None)
        return expires_at is not None and expires_at > self._clock()

    async def start_typing(
        self, conversation_key: str, identity_id: str, participant_ids: Iterable[str]
    ) -> None:
        self.record_start(conversation_key, identity_id)
        await self._announce(
            conversation_key,
            identity_id,
            participant_ids,
            build_typing_event(conversation_key, identity_id, True, self.ttl_seconds),
        )

    async def stop_typing(
        self, conversation_key: str, identity_id: str, participant_ids: Iterable[str]
    ) -> None:
        if not self.record_stop(conversation_key, identity_id):
            return
        await self._announce(
            conversation_key,
            identity_id,
            participant_ids,
            build_typing_event(conversation_key, identity_id, False),
        )

    async def _announce(
        self,
        conversation_key: str,
        identity_id: str,
        participant_ids: Iterable[str],
        event: dict,
    ) -> None:
        others = [uid for uid in participant_ids if uid != identity_id]
        if not others:
            return
        try:
            await self._publish(others, event)
        except Exception as e:
            logger.warning(
                f"[TYPING] Dropped {event['type']} for {conversation_key}: {e}",
                extra={"conversation_key": conversation_key, "user_id": identity_id},
            )

    def active(self, conversation_key: str) -> List[str]:
        """Identities currently typing in a conversation."""
        now = self._clock()
        return sorted(
            uid
            for (key, uid), expires_at in self._expires.items()
            if key == conversation_key and expires_at > now
        )

    def is_typing(self, conversation_key: str, identity_id: str) -> bool:
        expires_at = self._expires.get((conversation_key, identity_id))
        return expires_at is not None and expires_at > self._clock()

    def clear_identity(self, identity_id: str) -> None:
        """Forget every entry of an identity that went offline."""
        for entry in [k for k in self._expires if k[1] == identity_id]:
            self._expires.pop(entry, None)

    def prune(self) -> List[Tuple[str, str]]:
        """Drop expired entries; returns the (conversation_key, identity_id) pairs removed."""
        now = self._clock()
        expired = [entry for entry, expires_at in self._expires.items() if expires_at <= now]
        for entry in expired:
            self._expires.pop(entry, None)
        if expired:
            logger.debug(f"[TYPING] Pruned {len(expired)} expired indicators")
        return expired

    async def expire(
        self, participants_for: Callable[[str], Awaitable[Iterable[str]]]
    ) -> List[Tuple[str, str]]:
        """
        Prune, then announce ``typing_stopped`` for every indicator that timed
        out, so watchers drop it without waiting for their own TTL.
        """
        expired = self.prune()
        participants: Dict[str, List[str]] = {}
        for conversation_key, identity_id in expired:
            if conversation_key not in participants:
                participants[conversation_key] = list(await participants_for(conversation_key))
            await self._announce(
                conversation_key,
                identity_id,
                participants[conversation_key],
                build_typing_event(conversation_key, identity_id, False),
            )
        return expired

    def __len__(self) -> int:
        return len(self._expires)
