# backend/qachat/client/timeline.py
"""
Per-conversation timeline kept by the client.

The timeline is the client's view of one conversation, merged from three
sources that can overlap and arrive in any order: history pages, live
``message_received`` pushes, and the user's own optimistic sends.

Invariants:
    - authoritative messages are unique by id and rendered in ascending id
      order regardless of arrival order
    - an optimistic entry is replaced by its authoritative message in one
      step, matched on ``client_id``
    - authoritative events always win over optimistic overlays

State machine::

    LOADING --(history loaded)--> LIVE --(transport drop)--> RECONNECTING
       ^                                                       |
       +------------------(gap fill complete)-----------------+
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..schemas.realtime import MessagePayload, ReactionGroup

logger = logging.getLogger(__name__)


class TimelineState(str, Enum):
    LOADING = "loading"
    LIVE = "live"
    RECONNECTING = "reconnecting"


class PendingStatus(str, Enum):
    SENDING = "sending"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class PendingMessage:
    """An optimistic send awaiting its authoritative echo."""

    client_id: str
    sender_id: str
    body: str
    reply_to_id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: PendingStatus = PendingStatus.SENDING
    error: Optional[str] = None


class TimelineCorrupted(Exception):
    """Local state broke an ordering invariant and must be rebuilt."""


class ConversationTimeline:
    def __init__(self, conversation_key: str):
        self.conversation_key = conversation_key
        self.state = TimelineState.LOADING
        self._ids: List[int] = []
        self._by_id: Dict[int, MessagePayload] = {}
        self._pending: Dict[str, PendingMessage] = {}
        # (message_id, emoji) -> whether the local user should appear reacted
        self._reaction_overlay: Dict[Tuple[int, str], bool] = {}

    # State transitions

    def go_live(self) -> None:
        self.state = TimelineState.LIVE

    def mark_reconnecting(self) -> None:
        if self.state is TimelineState.LIVE:
            self.state = TimelineState.RECONNECTING

    def reset(self) -> None:
        """Back to LOADING with no authoritative content; pending sends survive."""
        self._ids.clear()
        self._by_id.clear()
        self._reaction_overlay.clear()
        self.state = TimelineState.LOADING

    # Authoritative input

    def apply_message(self, message: Any, client_id: Optional[str] = None) -> bool:
        """
        Merge one authoritative message. Returns True when it was new.

        Applying the same message twice leaves the timeline unchanged.
        """
        payload = _as_payload(message)
        if payload.conversation_key != self.conversation_key:
            return False
        client_id = client_id or payload.client_id
        if client_id:
            self._pending.pop(client_id, None)
        if payload.id in self._by_id:
            return False
        bisect.insort(self._ids, payload.id)
        self._by_id[payload.id] = payload
        return True

    def merge(self, messages: Iterable[Any]) -> int:
        """Merge a history page; returns how many messages were new."""
        return sum(1 for m in messages if self.apply_message(m))

    def apply_reactions(
        self, message_id: int, reactions: Iterable[Any], emoji: Optional[str] = None
    ) -> bool:
        """
        Replace a message's reaction set with the authoritative one.

        The optimistic overlay for ``(message_id, emoji)`` is dropped; with no
        emoji every overlay on the message is dropped.
        """
        if emoji is None:
            for key in [k for k in self._reaction_overlay if k[0] == message_id]:
                self._reaction_overlay.pop(key, None)
        else:
            self._reaction_overlay.pop((message_id, emoji), None)
        payload = self._by_id.get(message_id)
        if payload is None:
            return False
        groups = [ReactionGroup.model_validate(r) for r in reactions]
        self._by_id[message_id] = payload.model_copy(update={"reactions": groups})
        return True

    # Optimistic input

    def add_pending(
        self, client_id: str, sender_id: str, body: str, reply_to_id: Optional[int] = None
    ) -> PendingMessage:
        pending = PendingMessage(
            client_id=client_id, sender_id=sender_id, body=body, reply_to_id=reply_to_id
        )
        self._pending[client_id] = pending
        return pending

    def mark_pending(
        self, client_id: str, status: PendingStatus, error: Optional[str] = None
    ) -> Optional[PendingMessage]:
        pending = self._pending.get(client_id)
        if pending is not None:
            pending.status = status
            pending.error = error
        return pending

    def discard_pending(self, client_id: str) -> None:
        self._pending.pop(client_id, None)

    def toggle_reaction_optimistic(self, message_id: int, emoji: str, user_id: str) -> bool:
        """Flip the local user's reaction in the overlay; returns the new state."""
        reacted = not self._has_reacted(message_id, emoji, user_id)
        self._reaction_overlay[(message_id, emoji)] = reacted
        return reacted

    # Reads

    @property
    def highest_id(self) -> int:
        return self._ids[-1] if self._ids else 0

    @property
    def pending(self) -> List[PendingMessage]:
        return list(self._pending.values())

    def get(self, message_id: int) -> Optional[MessagePayload]:
        return self._by_id.get(message_id)

    def message_ids(self) -> List[int]:
        return list(self._ids)

    def messages(self) -> List[MessagePayload]:
        """Authoritative messages in ascending id order."""
        return [self._by_id[i] for i in self._ids]

    def reactions_for(self, message_id: int, user_id: str) -> List[ReactionGroup]:
        """Reaction groups with the local user's optimistic toggles applied."""
        payload = self._by_id.get(message_id)
        if payload is None:
            return []
        groups: Dict[str, Set[str]] = {g.emoji: set(g.user_ids) for g in payload.reactions}
        for (mid, emoji), reacted in self._reaction_overlay.items():
            if mid != message_id:
                continue
            users = groups.setdefault(emoji, set())
            if reacted:
                users.add(user_id)
            else:
                users.discard(user_id)
        return [
            ReactionGroup(emoji=emoji, count=len(users), user_ids=sorted(users))
            for emoji, users in sorted(groups.items())
            if users
        ]

    def _has_reacted(self, message_id: int, emoji: str, user_id: str) -> bool:
        overlay = self._reaction_overlay.get((message_id, emoji))
        if overlay is not None:
            return overlay
        payload = self._by_id.get(message_id)
        if payload is None:
            return False
        return any(g.emoji == emoji and user_id in g.user_ids for g in payload.reactions)

    # Integrity

    def check_consistency(self) -> None:
        """
        Raises:
            TimelineCorrupted: ids are not strictly ascending or the index
                disagrees with the stored messages
        """
        if any(a >= b for a, b in zip(self._ids, self._ids[1:])):
            raise TimelineCorrupted(f"{self.conversation_key}: ids not strictly ascending")
        if set(self._ids) != set(self._by_id) or len(self._ids) != len(self._by_id):
            raise TimelineCorrupted(f"{self.conversation_key}: index out of sync")
        for message_id, payload in self._by_id.items():
            if payload.id != message_id:
                raise TimelineCorrupted(f"{self.conversation_key}: message {message_id} mislabeled")

    def is_consistent(self) -> bool:
        try:
            self.check_consistency()
        except TimelineCorrupted:
            return False
        return True

    def rebuild(self, messages: Iterable[Any]) -> None:
        """Discard authoritative state and reload it from a fresh history page."""
        logger.warning(f"[TIMELINE] Rebuilding {self.conversation_key} from history")
        self.reset()
        self.merge(messages)
        self.go_live()


def _as_payload(message: Any) -> MessagePayload:
    if isinstance(message, MessagePayload):
        return message
    return MessagePayload.model_validate(message)
