# backend/qachat/api/dependencies/services.py
"""
Service dependencies for the REST routes.

Services are constructed per request around the request's DB session; the
realtime hub is a process-wide object created in the application lifespan.
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ...services.channel_service import ChannelService
from ...services.directory_service import DirectoryService
from ...services.message_router import MessageRouter
from ...services.messaging.hub import RealtimeHub
from ...services.moderation_service import ModerationService
from ...services.reaction_service import ReactionService
from ...services.read_receipt_service import ReadReceiptService
from .database import get_db


def get_hub(request: Request) -> RealtimeHub:
    hub = getattr(request.app.state, "hub", None)
    if hub is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime hub not initialized",
        )
    return hub


def get_message_router(db: Session = Depends(get_db)) -> MessageRouter:
    return MessageRouter(db)


def get_reaction_service(db: Session = Depends(get_db)) -> ReactionService:
    return ReactionService(db)


def get_read_receipt_service(db: Session = Depends(get_db)) -> ReadReceiptService:
    return ReadReceiptService(db)


def get_moderation_service(db: Session = Depends(get_db)) -> ModerationService:
    return ModerationService(db)


def get_channel_service(db: Session = Depends(get_db)) -> ChannelService:
    return ChannelService(db)


def get_directory_service(
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> DirectoryService:
    """Directory reads annotate users with live presence from the hub."""
    return DirectoryService(db, is_online=hub.registry.is_online)
