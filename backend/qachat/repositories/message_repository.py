# backend/qachat/repositories/message_repository.py
"""
Message Repository for the messaging core.

Message rows, their reactions, and the id-window queries used for history
paging and unread counts.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.message import Message, MessageReaction
from .base_repository import BaseRepository


class MessageRepository(BaseRepository[Message]):
    """Repository for Message and MessageReaction operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        super().__init__(db, Message)

    def create_message(
        self,
        *,
        conversation_key: str,
        sender_id: str,
        body: str,
        created_at: datetime,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """
        Insert a message and flush to obtain its id.

        Caller must hold the conversation ordering lock.
        """
        try:
            message = Message(
                conversation_key=conversation_key,
                sender_id=sender_id,
                body=body,
                reply_to_id=reply_to_id,
                client_id=client_id,
                attachments=list(attachments or []),
                created_at=created_at,
            )
            self.db.add(message)
            self.db.flush()
            self.logger.info(f"Created message {message.id} in conversation {conversation_key}")
            return message
        except Exception as e:
            self.logger.error(f"Error creating message: {str(e)}")
            raise RepositoryException(f"Failed to create message: {str(e)}")

    def find_by_client_id(self, sender_id: str, client_id: str) -> Optional[Message]:
        """The message a sender already submitted under ``client_id``, if any."""
        return cast(
            Optional[Message],
            self.db.query(Message)
            .filter(Message.sender_id == sender_id, Message.client_id == client_id)
            .first(),
        )

    def get_in_conversation(self, message_id: int, conversation_key: str) -> Optional[Message]:
        return cast(
            Optional[Message],
            self.db.query(Message)
            .filter(Message.id == message_id, Message.conversation_key == conversation_key)
            .first(),
        )

    def find_by_conversation(
        self,
        conversation_key: str,
        limit: int = 50,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> List[Message]:
        """
        One page of a conversation's messages in ascending id order.

        - ``after_id``: the oldest ``limit`` messages with a greater id (gap fill)
        - ``before_id``: the newest ``limit`` messages with a smaller id (scrollback)
        - neither: the newest ``limit`` messages
        """
        try:
            query = (
                self.db.query(Message)
                .filter(Message.conversation_key == conversation_key)
                .options(selectinload(Message.reactions))
            )
            if after_id is not None:
                query = query.filter(Message.id > after_id)
                if before_id is not None:
                    query = query.filter(Message.id < before_id)
                return cast(List[Message], query.order_by(Message.id.asc()).limit(limit).all())

            if before_id is not None:
                query = query.filter(Message.id < before_id)
            rows = cast(List[Message], query.order_by(Message.id.desc()).limit(limit).all())
            rows.reverse()
            return rows
        except Exception as e:
            self.logger.error(f"Error fetching messages for conversation: {str(e)}")
            raise RepositoryException(f"Failed to fetch messages for conversation: {str(e)}")

    def count_unread(self, conversation_key: str, user_id: str, after_id: int) -> int:
        """Messages past the cursor that someone else sent."""
        try:
            return int(
                self.db.query(func.count(Message.id))
                .filter(
                    and_(
                        Message.conversation_key == conversation_key,
                        Message.id > after_id,
                        Message.sender_id != user_id,
                    )
                )
                .scalar()
                or 0
            )
        except Exception as e:
            self.logger.error(f"Error counting unread messages: {str(e)}")
            raise RepositoryException(f"Failed to count unread messages: {str(e)}")

    def max_id(self, conversation_key: str) -> int:
        value = (
            self.db.query(func.max(Message.id))
            .filter(Message.conversation_key == conversation_key)
            .scalar()
        )
        return int(value or 0)

    # Reactions

    def get_reactions(self, message_id: int) -> List[MessageReaction]:
        return cast(
            List[MessageReaction],
            self.db.query(MessageReaction)
            .filter(MessageReaction.message_id == message_id)
            .order_by(MessageReaction.id)
            .all(),
        )

    def has_reaction(self, message_id: int, user_id: str, emoji: str) -> bool:
        return (
            self.db.query(MessageReaction.id)
            .filter(
                MessageReaction.message_id == message_id,
                MessageReaction.user_id == user_id,
                MessageReaction.emoji == emoji,
            )
            .first()
            is not None
        )

    def add_reaction(self, message_id: int, user_id: str, emoji: str) -> bool:
        """
        Insert a reaction.

        Returns False when the triple already exists, including when a
        concurrent writer inserted it first.
        """
        if self.has_reaction(message_id, user_id, emoji):
            return False
        try:
            with self.db.begin_nested():
                self.db.add(MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji))
            self.logger.info(f"Added reaction {emoji} by {user_id} on message {message_id}")
            return True
        except IntegrityError:
            self.logger.debug("Reaction %s by %s on %s already present", emoji, user_id, message_id)
            return False

    def remove_reaction(self, message_id: int, user_id: str, emoji: str) -> bool:
        try:
            deleted = (
                self.db.query(MessageReaction)
                .filter(
                    MessageReaction.message_id == message_id,
                    MessageReaction.user_id == user_id,
                    MessageReaction.emoji == emoji,
                )
                .delete(synchronize_session=False)
            )
            if deleted:
                self.logger.info(f"Removed reaction {emoji} by {user_id} on message {message_id}")
            return bool(deleted)
        except Exception as e:
            self.logger.error(f"Error removing reaction: {str(e)}")
            raise RepositoryException(f"Failed to remove reaction: {str(e)}")
