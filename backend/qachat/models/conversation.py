# backend/qachat/models/conversation.py
"""
Conversation and channel membership models.

A conversation is either a direct pair or a channel:

- Direct pair: key ``dm:<lo>:<hi>`` where lo/hi are the two participant ids
  sorted, so the key is the same whoever starts the conversation.
- Channel: key ``ch:<channel_id>`` with a bounded membership set, used for
  discussion rooms such as a test execution's comment thread.

``last_message_id`` doubles as the ordering counter row: the router locks it
while assigning the next message id.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..core.constants import CHANNEL_KEY_PREFIX, DIRECT_KEY_PREFIX
from ..core.enums import ConversationKind
from ..database import Base


def direct_conversation_key(user_a_id: str, user_b_id: str) -> str:
    """Canonical key for a direct pair, independent of who initiates."""
    lo, hi = sorted((str(user_a_id), str(user_b_id)))
    return f"{DIRECT_KEY_PREFIX}:{lo}:{hi}"


def channel_conversation_key(channel_id: str) -> str:
    return f"{CHANNEL_KEY_PREFIX}:{channel_id}"


def parse_conversation_key(key: str) -> tuple[ConversationKind, tuple[str, ...]]:
    """
    Split a conversation key into its kind and identifying parts.

    Raises:
        ValueError: If the key is not a well-formed direct or channel key
    """
    parts = (key or "").split(":")
    if len(parts) == 3 and parts[0] == DIRECT_KEY_PREFIX and parts[1] and parts[2]:
        if parts[1] == parts[2] or parts[1] > parts[2]:
            raise ValueError(f"Direct key is not canonical: {key}")
        return ConversationKind.DIRECT, (parts[1], parts[2])
    if len(parts) == 2 and parts[0] == CHANNEL_KEY_PREFIX and parts[1]:
        return ConversationKind.CHANNEL, (parts[1],)
    raise ValueError(f"Malformed conversation key: {key}")


class Conversation(Base):
    """
    Conversation model.

    Attributes:
        key: Canonical conversation key (primary key)
        kind: direct | channel
        user_a_id / user_b_id: Sorted participants of a direct pair
        name: Channel display name
        is_locked / is_disabled: Channel moderation switches
        last_message_id: Highest message id assigned in this conversation
    """

    __tablename__ = "conversations"

    key = Column(String(64), primary_key=True)
    kind = Column(String(16), nullable=False)
    user_a_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    user_b_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(255), nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)
    is_disabled = Column(Boolean, nullable=False, default=False)
    last_message_id = Column(Integer, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    members = relationship(
        "ChannelMember",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_conversations_user_a", "user_a_id"),
        Index("idx_conversations_user_b", "user_b_id"),
        Index("idx_conversations_last_message", "last_message_at"),
    )

    def __repr__(self) -> str:
        return f"<Conversation(key={self.key}, kind={self.kind})>"

    @property
    def is_direct(self) -> bool:
        return self.kind == ConversationKind.DIRECT.value

    @property
    def channel_id(self) -> str | None:
        if self.is_direct:
            return None
        return str(self.key).split(":", 1)[1]

    def get_other_user_id(self, current_user_id: str) -> str | None:
        """Return the other participant of a direct pair."""
        if not self.is_direct:
            return None
        if current_user_id == self.user_a_id:
            return str(self.user_b_id)
        return str(self.user_a_id)


class ChannelMember(Base):
    """Membership row for a channel conversation."""

    __tablename__ = "channel_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_key = Column(
        String(64), ForeignKey("conversations.key", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    conversation = relationship("Conversation", back_populates="members")

    __table_args__ = (
        UniqueConstraint("conversation_key", "user_id", name="uq_channel_member"),
        Index("idx_channel_members_user", "user_id"),
    )
