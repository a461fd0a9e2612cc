# backend/qachat/services/moderation_service.py
"""
Moderation service.

Stands in for the moderation collaborator: administrators mute and unmute
identities, and a periodic sweep clears timed mutes whose window has closed.
Every change is announced with ``user_muted`` / ``user_unmuted`` so clients
can update their advisory mute state, and recorded in the moderation audit
log inside the same transaction.
"""

import asyncio
from datetime import datetime, timedelta
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import MAX_MUTE_REASON_LENGTH
from ..core.enums import AuditAction, AuditTargetType
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.audit_log import ModerationAuditLog
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .messaging.events import build_user_muted_event, build_user_unmuted_event
from .messaging.publisher import publish_global

logger = logging.getLogger(__name__)

PublishAll = Callable[[Dict[str, Any]], Awaitable[None]]


class ModerationService(BaseService):
    def __init__(
        self,
        db: Session,
        publish_all: PublishAll = publish_global,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.audit_repository = RepositoryFactory.create_audit_log_repository(db)
        self._publish_all = publish_all
        self._clock = clock

    async def mute(
        self,
        actor: User,
        user_id: str,
        *,
        until: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> User:
        user = await asyncio.to_thread(
            self.mute_user,
            actor,
            user_id,
            until=until,
            duration_minutes=duration_minutes,
            reason=reason,
        )
        await self._publish_all(build_user_muted_event(str(user.id), user.muted_until, user.mute_reason))
        return user

    async def unmute(self, actor: User, user_id: str) -> User:
        user = await asyncio.to_thread(self.unmute_user, actor, user_id)
        await self._publish_all(build_user_unmuted_event(str(user.id)))
        return user

    async def sweep_expired(self) -> List[str]:
        """Clear elapsed mutes and announce each one."""
        cleared = await asyncio.to_thread(self.expire_mutes)
        for user_id in cleared:
            await self._publish_all(build_user_unmuted_event(user_id))
        return cleared

    @BaseService.measure_operation("mute_user")
    def mute_user(
        self,
        actor: User,
        user_id: str,
        *,
        until: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> User:
        """
        Mute an identity.

        Args:
            actor: Administrator performing the action
            user_id: Identity to mute
            until: Absolute end of the mute; None with no duration means indefinite
            duration_minutes: Relative alternative to ``until``
            reason: Optional note shown to the muted user

        Raises:
            ForbiddenException: Actor is not an administrator
            NotFoundException: Target does not exist
            BusinessRuleException: Target is an administrator
            ValidationException: The end time is not in the future
        """
        self._require_admin(actor)
        if until is not None and duration_minutes is not None:
            raise ValidationException("Provide either until or duration_minutes, not both")

        now = self._clock()
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise ValidationException("Mute duration must be positive")
            until = now + timedelta(minutes=duration_minutes)
        until = ensure_utc(until)
        if until is not None and until <= now:
            raise ValidationException("Mute end must be in the future")
        if reason is not None:
            reason = reason.strip()[:MAX_MUTE_REASON_LENGTH] or None
        audit_reason = reason or (f"Muted until {until.isoformat()}" if until else "Muted indefinitely")

        with self.transaction():
            user = self._get_user(user_id)
            if user.is_admin:
                raise BusinessRuleException(
                    "Administrators cannot be muted", code="cannot_mute_admin"
                )
            self.user_repository.apply_mute(
                user, until=until, reason=reason, muted_by=str(actor.id)
            )
            self.audit_repository.record(
                actor=actor,
                action=AuditAction.USER_MUTED,
                target_type=AuditTargetType.USER,
                target_id=user_id,
                target_name=user.name,
                reason=audit_reason,
                created_at=now,
            )

        logger.info(
            f"[MODERATION] {actor.id} muted {user_id}",
            extra={"user_id": user_id, "muted_until": until.isoformat() if until else None},
        )
        return user

    @BaseService.measure_operation("unmute_user")
    def unmute_user(self, actor: User, user_id: str) -> User:
        self._require_admin(actor)
        with self.transaction():
            user = self._get_user(user_id)
            self.user_repository.clear_mute(user)
            self.audit_repository.record(
                actor=actor,
                action=AuditAction.USER_UNMUTED,
                target_type=AuditTargetType.USER,
                target_id=user_id,
                target_name=user.name,
                created_at=self._clock(),
            )
        logger.info(f"[MODERATION] {actor.id} unmuted {user_id}", extra={"user_id": user_id})
        return user

    @BaseService.measure_operation("expire_mutes")
    def expire_mutes(self) -> List[str]:
        now = self._clock()
        with self.transaction():
            expired = self.user_repository.find_expired_mutes(now)
            for user in expired:
                self.user_repository.clear_mute(user)
                self.audit_repository.record(
                    actor=None,
                    action=AuditAction.USER_UNMUTED,
                    target_type=AuditTargetType.USER,
                    target_id=str(user.id),
                    target_name=user.name,
                    reason="Mute window elapsed",
                    created_at=now,
                )
            cleared = [str(user.id) for user in expired]
        if cleared:
            logger.info(f"[MODERATION] Cleared {len(cleared)} elapsed mutes")
        return cleared

    @BaseService.measure_operation("audit_log")
    def audit_log(
        self,
        actor: User,
        *,
        action: Optional[AuditAction] = None,
        target_type: Optional[AuditTargetType] = None,
        target_id: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ModerationAuditLog], int]:
        """Newest-first page of moderation actions (channel switches included)."""
        self._require_admin(actor)
        created_from, created_to = ensure_utc(created_from), ensure_utc(created_to)
        if created_from is not None and created_to is not None and created_from > created_to:
            raise ValidationException("created_from must not be after created_to")
        return self.audit_repository.find(
            action=action,
            target_type=target_type,
            target_id=target_id,
            created_from=created_from,
            created_to=created_to,
            limit=limit,
            offset=offset,
        )

    def _get_user(self, user_id: str) -> User:
        user = self.user_repository.get_by_id(user_id)
        if user is None:
            raise NotFoundException("User not found")
        return user

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not actor.is_admin:
            raise ForbiddenException("Administrator role required")
