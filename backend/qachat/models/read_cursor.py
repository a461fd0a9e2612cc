# backend/qachat/models/read_cursor.py
"""Per (identity, conversation) read watermark."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from ..database import Base


class ReadCursor(Base):
    """Highest message id an identity has acknowledged in a conversation."""

    __tablename__ = "read_cursors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    conversation_key = Column(
        String(64), ForeignKey("conversations.key", ondelete="CASCADE"), nullable=False
    )
    last_read_message_id = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (UniqueConstraint("user_id", "conversation_key", name="uq_read_cursor"),)
