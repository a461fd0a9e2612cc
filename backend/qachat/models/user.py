# backend/qachat/models/user.py
"""
User model as seen by the messaging core.

The account subsystem owns this table. The messaging core reads identity and
role, and reacts to moderation state (is_muted / muted_until / mute_reason)
authored by administrators.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String
import ulid

from ..core.enums import RoleName
from ..database import Base


class User(Base):
    """Identity with a closed role set and mutable moderation state."""

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=RoleName.TESTER.value)
    is_active = Column(Boolean, nullable=False, default=True)

    # Moderation state (externally authored)
    is_muted = Column(Boolean, nullable=False, default=False)
    muted_until = Column(DateTime(timezone=True), nullable=True)
    mute_reason = Column(String(255), nullable=True)
    muted_by = Column(String(26), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role}, muted={self.is_muted})>"

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN.value
