# backend/qachat/routes/v1/presence.py
"""
Presence routes - API v1

Snapshot of who is online, scoped to the caller's contacts or a channel.
Live changes arrive as ``presence_delta`` on the socket; the snapshot
version orders this response against those deltas.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies.auth import get_current_user
from ...api.dependencies.services import get_directory_service, get_hub
from ...models.user import User
from ...schemas.message_responses import PresenceResponse
from ...services.directory_service import DirectoryService
from ...services.messaging.hub import RealtimeHub

router = APIRouter(tags=["presence-v1"])


@router.get("", response_model=PresenceResponse)
def get_presence(
    channel_id: Optional[str] = Query(None, description="Scope to a channel's members"),
    current_user: User = Depends(get_current_user),
    directory: DirectoryService = Depends(get_directory_service),
    hub: RealtimeHub = Depends(get_hub),
) -> PresenceResponse:
    scope: List[str]
    if channel_id:
        scope = [str(e.user.id) for e in directory.list_channel_members(channel_id, current_user)]
    else:
        scope = directory.contact_ids(str(current_user.id))
    snapshot = hub.presence.snapshot(scope)
    return PresenceResponse(
        online=snapshot.online, versions=snapshot.versions, version=snapshot.version
    )
