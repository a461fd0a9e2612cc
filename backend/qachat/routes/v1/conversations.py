# backend/qachat/routes/v1/conversations.py
"""
Conversations routes - API v1

REST fallback and backfill for the realtime socket. All business logic is
delegated to the message router and the read-receipt service.

Endpoints:
    GET /                                   -> Conversation list with unread counts
    POST /direct/{user_id}/messages         -> Send to a direct pair (socket down)
    GET /{key}/messages                     -> Ascending history page
    POST /{key}/messages                    -> Send into an existing conversation
    PATCH /{key}/read                       -> Advance the read cursor
    GET /{key}/unread-count                 -> Unread messages past the cursor
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...api.dependencies.auth import get_current_user
from ...api.dependencies.services import (
    get_directory_service,
    get_message_router,
    get_read_receipt_service,
)
from ...core.config import settings
from ...models.user import User
from ...schemas.message_requests import MarkReadRequest, SendMessageRequest
from ...schemas.message_responses import (
    ConversationListResponse,
    ConversationSummaryResponse,
    MarkReadResponse,
    MessageHistoryResponse,
    MessageResponse,
    UnreadCountResponse,
)
from ...services.directory_service import DirectoryService
from ...services.message_router import MessageRouter
from ...services.messaging.events import serialize_message
from ...services.read_receipt_service import ReadReceiptService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["conversations-v1"])


def _message_response(message: object) -> MessageResponse:
    return MessageResponse.model_validate(serialize_message(message))


@router.get("", response_model=ConversationListResponse)
def list_conversations(
    current_user: User = Depends(get_current_user),
    service: DirectoryService = Depends(get_directory_service),
) -> ConversationListResponse:
    """Conversations the caller participates in, most recent activity first."""
    summaries = service.list_conversations(str(current_user.id))
    return ConversationListResponse(
        conversations=[
            ConversationSummaryResponse(
                key=str(s.conversation.key),
                kind=str(s.conversation.kind),
                name=s.conversation.name,
                other_user_id=s.other_user_id,
                is_locked=bool(s.conversation.is_locked),
                is_disabled=bool(s.conversation.is_disabled),
                last_message_id=s.conversation.last_message_id,
                last_message_at=s.conversation.last_message_at,
                last_read_message_id=s.last_read_message_id,
                unread_count=s.unread_count,
            )
            for s in summaries
        ]
    )


@router.post(
    "/direct/{user_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"description": "Sender is muted"},
        404: {"description": "Recipient not found"},
        422: {"description": "Rejected by policy"},
    },
)
async def send_direct_message(
    user_id: str,
    request: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    router_service: MessageRouter = Depends(get_message_router),
) -> MessageResponse:
    """
    Send a direct message over HTTP.

    Used by clients while the socket is reconnecting; the message is fanned
    out exactly as if it had arrived on the socket.
    """
    message = await router_service.send_direct(
        str(current_user.id),
        user_id,
        request.body,
        reply_to_id=request.reply_to_id,
        attachments=[a.model_dump(exclude_none=True) for a in request.attachments],
        client_id=request.client_id,
    )
    return _message_response(message)


@router.get("/{conversation_key}/messages", response_model=MessageHistoryResponse)
def get_history(
    conversation_key: str,
    limit: Optional[int] = Query(None, ge=1),
    before: Optional[int] = Query(None, ge=0, description="Only messages with a lower id"),
    after: Optional[int] = Query(None, ge=0, description="Only messages with a higher id"),
    current_user: User = Depends(get_current_user),
    router_service: MessageRouter = Depends(get_message_router),
) -> MessageHistoryResponse:
    """
    One ascending page of history.

    ``after`` is the reconnect backfill cursor: page forward from the
    highest id the client holds until ``has_more`` is false.
    """
    page_size = max(1, min(limit or settings.history_default_limit, settings.history_max_limit))
    messages = router_service.history(
        conversation_key, str(current_user.id), limit=page_size, before=before, after=after
    )
    return MessageHistoryResponse(
        conversation_key=conversation_key,
        messages=[_message_response(m) for m in messages],
        has_more=len(messages) >= page_size,
    )


@router.post(
    "/{conversation_key}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_key: str,
    request: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    router_service: MessageRouter = Depends(get_message_router),
) -> MessageResponse:
    message = await router_service.send(
        conversation_key,
        str(current_user.id),
        request.body,
        reply_to_id=request.reply_to_id,
        attachments=[a.model_dump(exclude_none=True) for a in request.attachments],
        client_id=request.client_id,
    )
    return _message_response(message)


@router.patch("/{conversation_key}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_key: str,
    request: MarkReadRequest,
    current_user: User = Depends(get_current_user),
    service: ReadReceiptService = Depends(get_read_receipt_service),
) -> MarkReadResponse:
    """Advance the caller's read cursor; it never moves backwards."""
    result = await service.mark_read_and_notify(
        str(current_user.id), conversation_key, request.up_to_message_id
    )
    return MarkReadResponse(
        conversation_key=conversation_key,
        last_read_message_id=result.current,
        advanced=result.advanced,
    )


@router.get("/{conversation_key}/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    conversation_key: str,
    current_user: User = Depends(get_current_user),
    service: ReadReceiptService = Depends(get_read_receipt_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(
        conversation_key=conversation_key,
        unread_count=service.unread_count(str(current_user.id), conversation_key),
    )
