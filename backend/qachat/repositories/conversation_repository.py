# backend/qachat/repositories/conversation_repository.py
"""
Conversation Repository for direct pairs and channels.

Handles:
- Find-or-create of a direct pair by its canonical key
- Channel creation and membership
- The row lock that serializes ordering-id assignment
- Listing conversations for a participant
"""

from datetime import datetime
import logging
from typing import Iterable, List, Optional, cast

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.enums import ConversationKind
from ..core.exceptions import RepositoryException
from ..models.conversation import (
    ChannelMember,
    Conversation,
    channel_conversation_key,
    direct_conversation_key,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation and ChannelMember operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        super().__init__(db, Conversation)

    def get_by_key(self, key: str) -> Optional[Conversation]:
        return cast(Optional[Conversation], self.db.get(Conversation, key))

    def lock_for_update(self, key: str) -> Optional[Conversation]:
        """
        Load the conversation row with a write lock held until commit.

        SQLite ignores FOR UPDATE; its single-writer lock plus the process
        lock in the router provide the same guarantee there.
        """
        try:
            return cast(
                Optional[Conversation],
                self.db.query(Conversation)
                .filter(Conversation.key == key)
                .populate_existing()
                .with_for_update()
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Error locking conversation {key}: {str(e)}")
            raise RepositoryException(f"Failed to lock conversation: {str(e)}")

    def get_or_create_direct(self, user_a_id: str, user_b_id: str) -> Conversation:
        """
        Return the direct conversation for a pair, creating it on first use.

        A concurrent creator may win the insert; the savepoint lets us fall
        back to reading the row it wrote.
        """
        key = direct_conversation_key(user_a_id, user_b_id)
        existing = self.get_by_key(key)
        if existing is not None:
            return existing

        lo, hi = sorted((str(user_a_id), str(user_b_id)))
        try:
            with self.db.begin_nested():
                conversation = Conversation(
                    key=key,
                    kind=ConversationKind.DIRECT.value,
                    user_a_id=lo,
                    user_b_id=hi,
                )
                self.db.add(conversation)
            logger.info("[CONVERSATION] Created direct conversation %s", key)
            return conversation
        except IntegrityError:
            self.logger.debug("Direct conversation %s created concurrently", key)
            winner = self.get_by_key(key)
            if winner is None:
                raise RepositoryException(f"Failed to create conversation {key}")
            return winner

    def create_channel(
        self,
        channel_id: str,
        name: str,
        member_ids: Iterable[str] = (),
    ) -> Conversation:
        try:
            conversation = Conversation(
                key=channel_conversation_key(channel_id),
                kind=ConversationKind.CHANNEL.value,
                name=name,
            )
            self.db.add(conversation)
            self.db.flush()
            for user_id in dict.fromkeys(member_ids):
                self.db.add(ChannelMember(conversation_key=conversation.key, user_id=user_id))
            self.db.flush()
            return conversation
        except Exception as e:
            self.logger.error(f"Error creating channel {channel_id}: {str(e)}")
            raise RepositoryException(f"Failed to create channel: {str(e)}")

    def add_member(self, key: str, user_id: str) -> bool:
        """Add a channel member; returns False when already a member."""
        if self.is_channel_member(key, user_id):
            return False
        try:
            with self.db.begin_nested():
                self.db.add(ChannelMember(conversation_key=key, user_id=user_id))
            return True
        except IntegrityError:
            return False

    def remove_member(self, key: str, user_id: str) -> bool:
        deleted = (
            self.db.query(ChannelMember)
            .filter(ChannelMember.conversation_key == key, ChannelMember.user_id == user_id)
            .delete(synchronize_session=False)
        )
        return bool(deleted)

    def is_channel_member(self, key: str, user_id: str) -> bool:
        return (
            self.db.query(ChannelMember.id)
            .filter(ChannelMember.conversation_key == key, ChannelMember.user_id == user_id)
            .first()
            is not None
        )

    def member_count(self, key: str) -> int:
        return int(
            self.db.query(ChannelMember).filter(ChannelMember.conversation_key == key).count()
        )

    def get_member_ids(self, key: str) -> List[str]:
        rows = (
            self.db.query(ChannelMember.user_id)
            .filter(ChannelMember.conversation_key == key)
            .order_by(ChannelMember.id)
            .all()
        )
        return [str(row[0]) for row in rows]

    def participant_ids(self, conversation: Conversation) -> List[str]:
        """Everyone entitled to see traffic in the conversation."""
        if conversation.is_direct:
            return [str(conversation.user_a_id), str(conversation.user_b_id)]
        return self.get_member_ids(str(conversation.key))

    def is_participant(self, conversation: Conversation, user_id: str) -> bool:
        if conversation.is_direct:
            return user_id in (conversation.user_a_id, conversation.user_b_id)
        return self.is_channel_member(str(conversation.key), user_id)

    def list_for_user(self, user_id: str) -> List[Conversation]:
        """
        Direct pairs and channels the user takes part in, most recently
        active first.
        """
        try:
            channel_keys = self.db.query(ChannelMember.conversation_key).filter(
                ChannelMember.user_id == user_id
            )
            rows = (
                self.db.query(Conversation)
                .filter(
                    or_(
                        Conversation.user_a_id == user_id,
                        Conversation.user_b_id == user_id,
                        Conversation.key.in_(channel_keys),
                    )
                )
                .all()
            )
        except Exception as e:
            self.logger.error(f"Error listing conversations for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list conversations: {str(e)}")

        def _sort_key(conv: Conversation) -> tuple[int, float, str]:
            last_at: Optional[datetime] = conv.last_message_at
            if last_at is None:
                return (1, 0.0, str(conv.key))
            return (0, -last_at.timestamp(), str(conv.key))

        return sorted(cast(List[Conversation], rows), key=_sort_key)

    def record_last_message(self, conversation: Conversation, message_id: int, at: datetime) -> None:
        conversation.last_message_id = message_id
        conversation.last_message_at = at
        self.db.flush()
