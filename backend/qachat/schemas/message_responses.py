# backend/qachat/schemas/message_responses.py
"""
Response schemas for the REST surface.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from ._strict_base import StrictModel
from .realtime import MessagePayload, ReactionGroup


class MessageResponse(MessagePayload):
    """A persisted message, same shape as the socket push."""


class MessageHistoryResponse(StrictModel):
    conversation_key: str
    messages: List[MessageResponse]
    has_more: bool = Field(..., description="A full page was returned; more may exist")


class MarkReadResponse(StrictModel):
    conversation_key: str
    last_read_message_id: int
    advanced: bool


class UnreadCountResponse(StrictModel):
    conversation_key: str
    unread_count: int


class ReactionStateResponse(StrictModel):
    message_id: int
    conversation_key: str
    action: str
    reactions: List[ReactionGroup]


class ConversationSummaryResponse(StrictModel):
    key: str
    kind: str
    name: Optional[str] = None
    other_user_id: Optional[str] = None
    is_locked: bool = False
    is_disabled: bool = False
    last_message_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    last_read_message_id: int = 0
    unread_count: int = 0


class ConversationListResponse(StrictModel):
    conversations: List[ConversationSummaryResponse]


class ContactResponse(StrictModel):
    id: str
    name: str
    email: str
    role: str
    online: bool


class ContactListResponse(StrictModel):
    contacts: List[ContactResponse]


class ChannelMemberResponse(StrictModel):
    id: str
    name: str
    role: str
    online: bool
    is_muted: bool
    muted_until: Optional[datetime] = None
    mute_reason: Optional[str] = None


class ChannelMembersResponse(StrictModel):
    channel_id: str
    members: List[ChannelMemberResponse]


class ChannelResponse(StrictModel):
    channel_id: str
    key: str
    name: Optional[str] = None
    is_locked: bool
    is_disabled: bool
    member_count: int


class PresenceResponse(StrictModel):
    online: List[str]
    versions: Dict[str, int]
    version: int


class ModerationStateResponse(StrictModel):
    user_id: str
    is_muted: bool
    muted_until: Optional[datetime] = None
    mute_reason: Optional[str] = None
    muted_by: Optional[str] = None


class AuditLogEntryResponse(StrictModel):
    id: int
    actor_id: Optional[str] = Field(None, description="Empty for system actions")
    actor_name: str
    action: str
    target_type: str
    target_id: str
    target_name: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


class AuditLogPageResponse(StrictModel):
    entries: List[AuditLogEntryResponse]
    total: int
    limit: int
    offset: int


class HealthResponse(StrictModel):
    status: str
    service: str
    version: str
    environment: str
    checks: Dict[str, Any] = Field(default_factory=dict)
