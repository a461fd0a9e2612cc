# backend/qachat/services/read_receipt_service.py
"""
Read-receipt cursors.

The stored cursor only moves forward: ``new = max(old, requested)``. A stale
or reordered mark-read is a no-op. Requests past the newest message are
clamped so a cursor never points at an id that does not exist yet.
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from sqlalchemy.orm import Session

from ..core.enums import ConversationKind
from ..core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ..models.conversation import Conversation, parse_conversation_key
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .messaging.events import build_message_read_event
from .messaging.publisher import publish_to_users

logger = logging.getLogger(__name__)

Publish = Callable[[Iterable[str], Dict[str, Any]], Awaitable[None]]


@dataclass
class MarkReadResult:
    """Cursor movement with notification context."""

    conversation_key: str
    user_id: str
    previous: int
    current: int
    participant_ids: List[str]

    @property
    def advanced(self) -> bool:
        return self.current > self.previous


class ReadReceiptService(BaseService):
    def __init__(self, db: Session, publish: Publish = publish_to_users):
        super().__init__(db)
        self.cursor_repository = RepositoryFactory.create_read_cursor_repository(db)
        self.message_repository = RepositoryFactory.create_message_repository(db)
        self.conversation_repository = RepositoryFactory.create_conversation_repository(db)
        self._publish = publish

    async def mark_read_and_notify(
        self, user_id: str, conversation_key: str, up_to_message_id: int
    ) -> MarkReadResult:
        """Move the cursor; forward moves broadcast ``message_read`` to the others."""
        result = await asyncio.to_thread(self.mark_read, user_id, conversation_key, up_to_message_id)
        if result.advanced:
            others = [uid for uid in result.participant_ids if uid != user_id]
            if others:
                await self._publish(
                    others,
                    build_message_read_event(conversation_key, user_id, result.current),
                )
        return result

    @BaseService.measure_operation("mark_read")
    def mark_read(self, user_id: str, conversation_key: str, up_to_message_id: int) -> MarkReadResult:
        if up_to_message_id < 0:
            raise ValidationException("Message id must not be negative", code="invalid_cursor")

        with self.transaction():
            conversation = self._require_participant(conversation_key, user_id)
            last_id = int(conversation.last_message_id or 0)
            target = min(int(up_to_message_id), last_id)
            previous, current = self.cursor_repository.advance(user_id, conversation_key, target)
            participants = self.conversation_repository.participant_ids(conversation)

        if current > previous:
            logger.debug(
                f"[READ] Cursor {user_id}/{conversation_key} {previous} -> {current}",
                extra={"conversation_key": conversation_key, "user_id": user_id},
            )
        return MarkReadResult(
            conversation_key=conversation_key,
            user_id=user_id,
            previous=previous,
            current=max(previous, current),
            participant_ids=participants,
        )

    @BaseService.measure_operation("get_cursor")
    def get_cursor(self, user_id: str, conversation_key: str) -> int:
        return self.cursor_repository.get_position(user_id, conversation_key)

    @BaseService.measure_operation("unread_count")
    def unread_count(self, user_id: str, conversation_key: str) -> int:
        """Messages past the caller's cursor that someone else sent."""
        conversation = self.conversation_repository.get_by_key(conversation_key)
        if conversation is None:
            if self._is_own_direct_key(conversation_key, user_id):
                return 0
            raise NotFoundException("Conversation not found", code="unknown_conversation")
        if not self.conversation_repository.is_participant(conversation, user_id):
            raise ForbiddenException(
                "You are not a participant in this conversation", code="not_a_member"
            )
        cursor = self.cursor_repository.get_position(user_id, conversation_key)
        return self.message_repository.count_unread(conversation_key, user_id, cursor)

    def _require_participant(self, conversation_key: str, user_id: str) -> Conversation:
        conversation = self.conversation_repository.get_by_key(conversation_key)
        if conversation is None:
            raise NotFoundException("Conversation not found", code="unknown_conversation")
        if not self.conversation_repository.is_participant(conversation, user_id):
            raise ForbiddenException(
                "You are not a participant in this conversation", code="not_a_member"
            )
        return conversation

    @staticmethod
    def _is_own_direct_key(conversation_key: str, user_id: str) -> bool:
        try:
            kind, parts = parse_conversation_key(conversation_key)
        except ValueError:
            return False
        return kind is ConversationKind.DIRECT and user_id in parts
