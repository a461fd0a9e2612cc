# backend/qachat/repositories/audit_log_repository.py
"""
Audit Log Repository.

Rows are only ever inserted. Reads are newest first and filterable by
action, target and time window.
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple, cast

from sqlalchemy.orm import Session

from ..core.enums import AuditAction, AuditTargetType
from ..core.exceptions import RepositoryException
from ..models.audit_log import ModerationAuditLog
from ..models.user import User
from .base_repository import BaseRepository

SYSTEM_ACTOR_NAME = "system"


class AuditLogRepository(BaseRepository[ModerationAuditLog]):
    def __init__(self, db: Session):
        super().__init__(db, ModerationAuditLog)

    def record(
        self,
        *,
        actor: Optional[User],
        action: AuditAction,
        target_type: AuditTargetType,
        target_id: str,
        target_name: Optional[str] = None,
        reason: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ModerationAuditLog:
        """
        Add an entry to the caller's transaction.

        ``actor`` None records a system action.
        """
        try:
            entry = ModerationAuditLog(
                actor_id=str(actor.id) if actor is not None else None,
                actor_name=str(actor.name) if actor is not None else SYSTEM_ACTOR_NAME,
                action=action.value,
                target_type=target_type.value,
                target_id=str(target_id),
                target_name=target_name,
                reason=reason,
            )
            if created_at is not None:
                entry.created_at = created_at
            self.db.add(entry)
            self.db.flush()
            return entry
        except Exception as e:
            self.logger.error(f"Error writing audit entry: {str(e)}")
            raise RepositoryException(f"Failed to write audit entry: {str(e)}")

    def find(
        self,
        *,
        action: Optional[AuditAction] = None,
        target_type: Optional[AuditTargetType] = None,
        target_id: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ModerationAuditLog], int]:
        """One page of entries, newest first, plus the total matching count."""
        query: Any = self.db.query(ModerationAuditLog)
        if action is not None:
            query = query.filter(ModerationAuditLog.action == action.value)
        if target_type is not None:
            query = query.filter(ModerationAuditLog.target_type == target_type.value)
        if target_id is not None:
            query = query.filter(ModerationAuditLog.target_id == target_id)
        if created_from is not None:
            query = query.filter(ModerationAuditLog.created_at >= created_from)
        if created_to is not None:
            query = query.filter(ModerationAuditLog.created_at <= created_to)

        total = int(query.count())
        rows = cast(
            List[ModerationAuditLog],
            query.order_by(ModerationAuditLog.id.desc()).offset(offset).limit(limit).all(),
        )
        return rows, total
