# backend/qachat/services/channel_service.py
"""
Channel lifecycle: creation, bounded membership, and the lock / disable
switches that the router enforces on every send. Switch changes are written
to the moderation audit log in the same transaction.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import AuditAction, AuditTargetType
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.ulid_helper import generate_ulid
from ..models.conversation import Conversation, channel_conversation_key
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class ChannelService(BaseService):
    def __init__(self, db: Session, max_members: Optional[int] = None):
        super().__init__(db)
        self.conversation_repository = RepositoryFactory.create_conversation_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.audit_repository = RepositoryFactory.create_audit_log_repository(db)
        self.max_members = max_members or settings.channel_max_members

    @BaseService.measure_operation("create_channel")
    def create_channel(
        self,
        actor: User,
        name: str,
        member_ids: Iterable[str] = (),
        channel_id: Optional[str] = None,
    ) -> Conversation:
        """
        Create a channel with the actor as its first member.

        ``channel_id`` lets callers bind a channel to an external record
        (for example a test execution); a ULID is generated otherwise.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationException("Channel name is required")
        channel_id = channel_id or generate_ulid()
        members: List[str] = list(dict.fromkeys([str(actor.id), *[str(m) for m in member_ids]]))
        if len(members) > self.max_members:
            raise BusinessRuleException(
                f"Channels are limited to {self.max_members} members", code="channel_full"
            )

        with self.transaction():
            if self.conversation_repository.get_by_key(channel_conversation_key(channel_id)):
                raise BusinessRuleException("Channel already exists", code="channel_exists")
            known = {str(u.id) for u in self.user_repository.get_many(members) if u.is_active}
            missing = [m for m in members if m not in known]
            if missing:
                raise ValidationException(
                    "Unknown or inactive members", details={"user_ids": missing}
                )
            conversation = self.conversation_repository.create_channel(channel_id, name, members)

        logger.info(f"[CHANNEL] Created {conversation.key} with {len(members)} members")
        return conversation

    @BaseService.measure_operation("add_member")
    def add_member(self, actor: User, channel_id: str, user_id: str) -> bool:
        key = channel_conversation_key(channel_id)
        with self.transaction():
            self._get_channel(key)
            self._require_member_or_admin(actor, key)
            if self.user_repository.get_active(user_id) is None:
                raise NotFoundException("User not found")
            if self.conversation_repository.is_channel_member(key, user_id):
                return False
            if self.conversation_repository.member_count(key) >= self.max_members:
                raise BusinessRuleException(
                    f"Channels are limited to {self.max_members} members", code="channel_full"
                )
            added = self.conversation_repository.add_member(key, user_id)
        return added

    @BaseService.measure_operation("remove_member")
    def remove_member(self, actor: User, channel_id: str, user_id: str) -> bool:
        key = channel_conversation_key(channel_id)
        if str(actor.id) != user_id and not actor.is_admin:
            raise ForbiddenException("Only administrators can remove other members")
        with self.transaction():
            self._get_channel(key)
            removed = self.conversation_repository.remove_member(key, user_id)
        return removed

    @BaseService.measure_operation("update_switches")
    def update_switches(
        self,
        actor: User,
        channel_id: str,
        *,
        is_locked: Optional[bool] = None,
        is_disabled: Optional[bool] = None,
        reason: Optional[str] = None,
    ) -> Conversation:
        """Set the lock / disable switches; each switch that actually flips is audited."""
        if not actor.is_admin:
            raise ForbiddenException("Administrator role required")
        with self.transaction():
            conversation = self._get_channel(channel_conversation_key(channel_id))
            changes: List[AuditAction] = []
            if is_locked is not None and bool(conversation.is_locked) != is_locked:
                conversation.is_locked = is_locked
                changes.append(AuditAction.CHANNEL_LOCKED if is_locked else AuditAction.CHANNEL_UNLOCKED)
            if is_disabled is not None and bool(conversation.is_disabled) != is_disabled:
                conversation.is_disabled = is_disabled
                changes.append(AuditAction.CHAT_DISABLED if is_disabled else AuditAction.CHAT_ENABLED)
            for action in changes:
                self.audit_repository.record(
                    actor=actor,
                    action=action,
                    target_type=AuditTargetType.CHANNEL,
                    target_id=channel_id,
                    target_name=conversation.name,
                    reason=reason,
                )
            self.conversation_repository.flush()
        logger.info(
            f"[CHANNEL] Switches updated for {conversation.key}",
            extra={"is_locked": conversation.is_locked, "is_disabled": conversation.is_disabled},
        )
        return conversation

    def _get_channel(self, key: str) -> Conversation:
        conversation = self.conversation_repository.get_by_key(key)
        if conversation is None or conversation.is_direct:
            raise NotFoundException("Channel not found")
        return conversation

    def _require_member_or_admin(self, actor: User, key: str) -> None:
        if actor.is_admin:
            return
        if not self.conversation_repository.is_channel_member(key, str(actor.id)):
            raise ForbiddenException("You are not a member of this channel")
