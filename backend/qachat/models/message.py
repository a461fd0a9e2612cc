# backend/qachat/models/message.py
"""
Message model for the chat system.

Messages are immutable once accepted; only their reaction set changes.
``id`` is the ordering and dedup key: globally unique and strictly
increasing within a conversation.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON as SAJSON

from ..database import Base


class Message(Base):
    """Message accepted by the router."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_key = Column(
        String(64), ForeignKey("conversations.key", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    body = Column(String(4000), nullable=False)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    # Sender-chosen correlation id; a replayed send resolves to the same row
    client_id = Column(String(64), nullable=True)
    # Attachment references handed over by the upload collaborator
    attachments = Column(SAJSON, nullable=False, default=list)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.id",
    )

    __table_args__ = (
        Index("idx_messages_conversation_id", "conversation_key", "id"),
        UniqueConstraint("sender_id", "client_id", name="uq_message_sender_client"),
        # ids are never reused, even after the highest row is deleted
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation={self.conversation_key})>"


class MessageReaction(Base):
    """
    Emoji reactions for messages.
    """

    __tablename__ = "message_reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(16), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    message = relationship("Message", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction"),
    )
