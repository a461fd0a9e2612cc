# backend/qachat/models/audit_log.py
"""Append-only record of moderation actions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from ..database import Base


class ModerationAuditLog(Base):
    """
    One moderation action.

    Written in the same transaction as the change it describes, so an entry
    exists exactly when the change committed. ``actor_id`` is empty for
    actions taken by the system (mute expiry).
    """

    __tablename__ = "moderation_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_name = Column(String(255), nullable=False)
    action = Column(String(32), nullable=False)
    target_type = Column(String(16), nullable=False)
    target_id = Column(String(64), nullable=False)
    target_name = Column(String(255), nullable=True)
    reason = Column(String(500), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_audit_created_at", "created_at"),
        Index("idx_audit_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<ModerationAuditLog(id={self.id}, action={self.action}, target={self.target_id})>"
