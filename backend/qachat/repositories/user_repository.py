# backend/qachat/repositories/user_repository.py
"""
User Repository for the messaging core.

Read access to identities plus the moderation columns the moderation
collaborator writes.
"""

from datetime import datetime
from typing import Iterable, List, Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User entity operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        super().__init__(db, User)

    def get_active(self, user_id: str) -> Optional[User]:
        """Return the user when it exists and is active."""
        try:
            return cast(
                Optional[User],
                self.db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first(),
            )
        except Exception as e:
            self.logger.error(f"Error loading active user {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to load user: {str(e)}")

    def get_many(self, user_ids: Iterable[str]) -> List[User]:
        ids = list({str(uid) for uid in user_ids})
        if not ids:
            return []
        try:
            return cast(
                List[User],
                self.db.query(User).filter(User.id.in_(ids)).order_by(User.name, User.id).all(),
            )
        except Exception as e:
            self.logger.error(f"Error loading users: {str(e)}")
            raise RepositoryException(f"Failed to load users: {str(e)}")

    def list_contacts(self, user_id: str) -> List[User]:
        """
        Every active identity other than the caller, ordered by display name.
        """
        try:
            return cast(
                List[User],
                self.db.query(User)
                .filter(User.id != user_id, User.is_active.is_(True))
                .order_by(User.name, User.id)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error listing contacts for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list contacts: {str(e)}")

    def find_expired_mutes(self, now: datetime) -> List[User]:
        """Users whose timed mute has elapsed but whose flag is still set."""
        try:
            return cast(
                List[User],
                self.db.query(User)
                .filter(
                    User.is_muted.is_(True),
                    User.muted_until.isnot(None),
                    User.muted_until <= now,
                )
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error finding expired mutes: {str(e)}")
            raise RepositoryException(f"Failed to find expired mutes: {str(e)}")

    def apply_mute(
        self,
        user: User,
        *,
        until: Optional[datetime],
        reason: Optional[str],
        muted_by: Optional[str],
    ) -> User:
        user.is_muted = True
        user.muted_until = until
        user.mute_reason = reason
        user.muted_by = muted_by
        self.db.flush()
        return user

    def clear_mute(self, user: User) -> User:
        user.is_muted = False
        user.muted_until = None
        user.mute_reason = None
        user.muted_by = None
        self.db.flush()
        return user
