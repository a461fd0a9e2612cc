# backend/qachat/services/reaction_service.py
"""
Reaction aggregator.

A reaction is membership of ``(message_id, emoji, user_id)`` in a set.
Toggling retracts a present triple and adds an absent one. Writers never
touch each other's triples, so toggles from different users commute; the
unique constraint turns a racing duplicate insert into "already present".
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from sqlalchemy.orm import Session

from ..core.constants import MAX_EMOJI_LENGTH
from ..core.enums import ReactionAction
from ..core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .messaging.events import build_reaction_updated_event, group_reactions
from .messaging.publisher import publish_to_users

logger = logging.getLogger(__name__)

Publish = Callable[[Iterable[str], Dict[str, Any]], Awaitable[None]]


@dataclass
class ReactionState:
    """Aggregated reactions after a toggle, with notification context."""

    message_id: int
    conversation_key: str
    emoji: str
    user_id: str
    action: ReactionAction
    reactions: List[Dict[str, Any]]
    participant_ids: List[str]


class ReactionService(BaseService):
    def __init__(self, db: Session, publish: Publish = publish_to_users):
        super().__init__(db)
        self.message_repository = RepositoryFactory.create_message_repository(db)
        self.conversation_repository = RepositoryFactory.create_conversation_repository(db)
        self._publish = publish

    async def toggle(self, message_id: int, user_id: str, emoji: str) -> ReactionState:
        """Toggle and broadcast ``reaction_updated`` to the conversation."""
        state = await asyncio.to_thread(self.toggle_reaction, message_id, user_id, emoji)
        await self._publish(
            state.participant_ids,
            build_reaction_updated_event(
                conversation_key=state.conversation_key,
                message_id=state.message_id,
                reactions=state.reactions,
                user_id=state.user_id,
                emoji=state.emoji,
                action=state.action.value,
            ),
        )
        return state

    @BaseService.measure_operation("toggle_reaction")
    def toggle_reaction(self, message_id: int, user_id: str, emoji: str) -> ReactionState:
        emoji = self._normalize_emoji(emoji)

        with self.transaction():
            message = self.message_repository.get_by_id(message_id, load_relationships=False)
            if message is None:
                raise NotFoundException("Message not found")
            conversation = self.conversation_repository.get_by_key(str(message.conversation_key))
            if conversation is None or not self.conversation_repository.is_participant(
                conversation, user_id
            ):
                raise ForbiddenException("You do not have access to this message")

            if self.message_repository.has_reaction(message_id, user_id, emoji):
                self.message_repository.remove_reaction(message_id, user_id, emoji)
                action = ReactionAction.REMOVED
            else:
                self.message_repository.add_reaction(message_id, user_id, emoji)
                action = ReactionAction.ADDED
            participants = self.conversation_repository.participant_ids(conversation)

        reactions = group_reactions(self.message_repository.get_reactions(message_id))
        self.log_operation(
            "toggle_reaction", message_id=message_id, user_id=user_id, action=action.value
        )
        return ReactionState(
            message_id=int(message_id),
            conversation_key=str(message.conversation_key),
            emoji=emoji,
            user_id=user_id,
            action=action,
            reactions=reactions,
            participant_ids=participants,
        )

    @BaseService.measure_operation("get_reactions")
    def get_reactions(self, message_id: int, user_id: str) -> List[Dict[str, Any]]:
        message = self.message_repository.get_by_id(message_id, load_relationships=False)
        if message is None:
            raise NotFoundException("Message not found")
        conversation = self.conversation_repository.get_by_key(str(message.conversation_key))
        if conversation is None or not self.conversation_repository.is_participant(
            conversation, user_id
        ):
            raise ForbiddenException("You do not have access to this message")
        return group_reactions(self.message_repository.get_reactions(message_id))

    @staticmethod
    def _normalize_emoji(emoji: str) -> str:
        value = (emoji or "").strip()
        if not value:
            raise ValidationException("Emoji is required", code="invalid_emoji")
        if len(value) > MAX_EMOJI_LENGTH:
            raise ValidationException("Emoji is too long", code="invalid_emoji")
        return value
