# backend/qachat/api/dependencies/auth.py
"""
Authentication dependencies resolving the caller to a User row.
"""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...auth import get_current_user_id
from ...models.user import User
from ...repositories.factory import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)


def load_active_user(db: Session, user_id: str) -> User:
    """
    Resolve an authenticated subject to an active user.

    Raises:
        HTTPException: 401 when the user is unknown or deactivated
    """
    user = RepositoryFactory.create_user_repository(db).get_active(user_id)
    if user is None:
        logger.info("Rejected token for unknown or inactive user", extra={"user_id": user_id})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    return load_active_user(db, user_id)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
