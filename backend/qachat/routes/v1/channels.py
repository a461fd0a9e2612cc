# backend/qachat/routes/v1/channels.py
"""
Channels routes - API v1

Endpoints:
    POST /                              -> Create a channel (creator joins)
    GET /{channel_id}/members           -> Roster with mute state and presence
    POST /{channel_id}/members          -> Add a member
    DELETE /{channel_id}/members/{uid}  -> Leave, or remove a member (admin)
    PATCH /{channel_id}                 -> Lock / disable switches (admin)
"""

import logging

from fastapi import APIRouter, Depends, Response, status

from ...api.dependencies.auth import get_current_user, require_admin
from ...api.dependencies.services import get_channel_service, get_directory_service
from ...models.conversation import Conversation
from ...models.user import User
from ...schemas.message_requests import (
    AddChannelMemberRequest,
    CreateChannelRequest,
    UpdateChannelRequest,
)
from ...schemas.message_responses import (
    ChannelMemberResponse,
    ChannelMembersResponse,
    ChannelResponse,
)
from ...services.channel_service import ChannelService
from ...services.directory_service import DirectoryService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["channels-v1"])


def _channel_response(service: ChannelService, conversation: Conversation) -> ChannelResponse:
    return ChannelResponse(
        channel_id=str(conversation.channel_id),
        key=str(conversation.key),
        name=conversation.name,
        is_locked=bool(conversation.is_locked),
        is_disabled=bool(conversation.is_disabled),
        member_count=service.conversation_repository.member_count(str(conversation.key)),
    )


@router.post("", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
def create_channel(
    request: CreateChannelRequest,
    current_user: User = Depends(get_current_user),
    service: ChannelService = Depends(get_channel_service),
) -> ChannelResponse:
    conversation = service.create_channel(
        current_user, request.name, request.member_ids, channel_id=request.channel_id
    )
    return _channel_response(service, conversation)


@router.get("/{channel_id}/members", response_model=ChannelMembersResponse)
def list_members(
    channel_id: str,
    current_user: User = Depends(get_current_user),
    service: DirectoryService = Depends(get_directory_service),
) -> ChannelMembersResponse:
    """Channel membership with per-member mute state and online flag."""
    entries = service.list_channel_members(channel_id, current_user)
    return ChannelMembersResponse(
        channel_id=channel_id,
        members=[
            ChannelMemberResponse(
                id=str(e.user.id),
                name=str(e.user.name),
                role=str(e.user.role),
                online=e.online,
                is_muted=bool(e.user.is_muted),
                muted_until=e.user.muted_until,
                mute_reason=e.user.mute_reason,
            )
            for e in entries
        ],
    )


@router.post("/{channel_id}/members", status_code=status.HTTP_204_NO_CONTENT)
def add_member(
    channel_id: str,
    request: AddChannelMemberRequest,
    current_user: User = Depends(get_current_user),
    service: ChannelService = Depends(get_channel_service),
) -> Response:
    service.add_member(current_user, channel_id, request.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{channel_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    channel_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: ChannelService = Depends(get_channel_service),
) -> Response:
    service.remove_member(current_user, channel_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{channel_id}", response_model=ChannelResponse)
def update_channel(
    channel_id: str,
    request: UpdateChannelRequest,
    admin: User = Depends(require_admin),
    service: ChannelService = Depends(get_channel_service),
) -> ChannelResponse:
    """Locked or disabled channels refuse new messages with ``channel_locked``."""
    conversation = service.update_switches(
        admin,
        channel_id,
        is_locked=request.is_locked,
        is_disabled=request.is_disabled,
        reason=request.reason,
    )
    return _channel_response(service, conversation)
