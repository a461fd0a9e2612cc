# backend/qachat/schemas/message_requests.py
"""
Request schemas for the REST fallback surface.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from ..core.constants import MAX_EMOJI_LENGTH, MAX_MUTE_REASON_LENGTH
from ._strict_base import StrictRequestModel
from .realtime import AttachmentRef


class SendMessageRequest(StrictRequestModel):
    """Send fallback used while the socket is down."""

    body: str = Field(..., description="Message text; trimmed server-side")
    reply_to_id: Optional[int] = None
    client_id: Optional[str] = Field(None, max_length=64)
    attachments: List[AttachmentRef] = Field(default_factory=list)


class MarkReadRequest(StrictRequestModel):
    up_to_message_id: int = Field(..., ge=0, description="Highest message id seen")


class ToggleReactionRequest(StrictRequestModel):
    emoji: str = Field(..., min_length=1, max_length=MAX_EMOJI_LENGTH)


class MuteUserRequest(StrictRequestModel):
    """Mute parameters; neither until nor duration means indefinite."""

    until: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=MAX_MUTE_REASON_LENGTH)

    @model_validator(mode="after")
    def check_single_end(self) -> "MuteUserRequest":
        if self.until is not None and self.duration_minutes is not None:
            raise ValueError("Provide either until or duration_minutes, not both")
        return self


class CreateChannelRequest(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    channel_id: Optional[str] = Field(None, min_length=1, max_length=60, pattern=r"^[A-Za-z0-9_\-]+$")
    member_ids: List[str] = Field(default_factory=list)


class AddChannelMemberRequest(StrictRequestModel):
    user_id: str = Field(..., min_length=1)


class UpdateChannelRequest(StrictRequestModel):
    is_locked: Optional[bool] = None
    is_disabled: Optional[bool] = None
    reason: Optional[str] = Field(None, max_length=MAX_MUTE_REASON_LENGTH, description="Recorded in the audit log")


# Ensure models are fully built for FastAPI dependency resolution in tests.
SendMessageRequest.model_rebuild()
MuteUserRequest.model_rebuild()
