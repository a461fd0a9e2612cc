# backend/qachat/routes/v1/moderation.py
"""
Admin moderation routes - API v1

Stand-in for the moderation collaborator. Administrators only; other
administrators cannot be muted.

    GET /audit               -> Audit log of moderation actions, newest first
    GET /{user_id}           -> Current mute state
    POST /{user_id}/mute     -> Mute (until, duration, or indefinitely)
    DELETE /{user_id}/mute   -> Unmute
"""

from datetime import datetime
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...api.dependencies.auth import require_admin
from ...api.dependencies.database import get_db
from ...api.dependencies.services import get_moderation_service
from ...core.enums import AuditAction, AuditTargetType
from ...core.exceptions import NotFoundException
from ...models.audit_log import ModerationAuditLog
from ...models.user import User
from ...repositories.factory import RepositoryFactory
from ...schemas.message_requests import MuteUserRequest
from ...schemas.message_responses import (
    AuditLogEntryResponse,
    AuditLogPageResponse,
    ModerationStateResponse,
)
from ...services.moderation_service import ModerationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-moderation-v1"])


def _state(user: User) -> ModerationStateResponse:
    return ModerationStateResponse(
        user_id=str(user.id),
        is_muted=bool(user.is_muted),
        muted_until=user.muted_until,
        mute_reason=user.mute_reason,
        muted_by=user.muted_by,
    )


def _audit_entry(entry: ModerationAuditLog) -> AuditLogEntryResponse:
    return AuditLogEntryResponse(
        id=int(entry.id),
        actor_id=entry.actor_id,
        actor_name=entry.actor_name,
        action=entry.action,
        target_type=entry.target_type,
        target_id=entry.target_id,
        target_name=entry.target_name,
        reason=entry.reason,
        created_at=entry.created_at,
    )


# Declared before /{user_id} so "audit" is not read as a user id
@router.get("/audit", response_model=AuditLogPageResponse)
def get_audit_log(
    action: Optional[AuditAction] = Query(None),
    target_type: Optional[AuditTargetType] = Query(None),
    target_id: Optional[str] = Query(None, max_length=64),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service),
) -> AuditLogPageResponse:
    entries, total = service.audit_log(
        admin,
        action=action,
        target_type=target_type,
        target_id=target_id,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
    )
    return AuditLogPageResponse(
        entries=[_audit_entry(e) for e in entries], total=total, limit=limit, offset=offset
    )


@router.get("/{user_id}", response_model=ModerationStateResponse)
def get_moderation_state(
    user_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ModerationStateResponse:
    user = RepositoryFactory.create_user_repository(db).get_by_id(user_id)
    if user is None:
        raise NotFoundException("User not found")
    return _state(user)


@router.post("/{user_id}/mute", response_model=ModerationStateResponse)
async def mute_user(
    user_id: str,
    request: MuteUserRequest,
    admin: User = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service),
) -> ModerationStateResponse:
    user = await service.mute(
        admin,
        user_id,
        until=request.until,
        duration_minutes=request.duration_minutes,
        reason=request.reason,
    )
    return _state(user)


@router.delete("/{user_id}/mute", response_model=ModerationStateResponse)
async def unmute_user(
    user_id: str,
    admin: User = Depends(require_admin),
    service: ModerationService = Depends(get_moderation_service),
) -> ModerationStateResponse:
    user = await service.unmute(admin, user_id)
    return _state(user)
