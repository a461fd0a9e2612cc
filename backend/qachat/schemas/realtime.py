# backend/qachat/schemas/realtime.py
"""
Wire protocol for the realtime socket.

Every frame in either direction is an envelope::

    {"type": str, "schema_version": int, "timestamp": str, "payload": {...}}

``type`` is the discriminator: ``ClientCommand`` covers client -> server
frames and ``ServerEvent`` covers server -> client frames.
"""

from datetime import datetime, timezone
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from ..core.constants import MAX_EMOJI_LENGTH
from ._strict_base import LenientModel, StrictRequestModel

SCHEMA_VERSION = 1


# Shared payload pieces


class AttachmentRef(StrictRequestModel):
    """Reference handed over by the upload collaborator."""

    id: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = Field(None, max_length=255)
    url: Optional[str] = Field(None, max_length=2048)
    content_type: Optional[str] = Field(None, max_length=128)
    size: Optional[int] = Field(None, ge=0)


class ReactionGroup(LenientModel):
    emoji: str
    count: int
    user_ids: List[str]


class MessagePayload(LenientModel):
    id: int
    conversation_key: str
    sender_id: str
    body: str
    created_at: datetime
    reply_to_id: Optional[int] = None
    client_id: Optional[str] = None
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    reactions: List[ReactionGroup] = Field(default_factory=list)


# Client -> server


class _CommandEnvelope(StrictRequestModel):
    schema_version: int = SCHEMA_VERSION
    timestamp: Optional[str] = None


class SendDirectMessagePayload(StrictRequestModel):
    recipient_id: str = Field(..., min_length=1)
    body: str
    client_id: Optional[str] = Field(None, max_length=64)
    reply_to_id: Optional[int] = None
    attachments: List[AttachmentRef] = Field(default_factory=list)


class SendChannelMessagePayload(StrictRequestModel):
    channel_id: str = Field(..., min_length=1)
    body: str
    client_id: Optional[str] = Field(None, max_length=64)
    reply_to_id: Optional[int] = None
    attachments: List[AttachmentRef] = Field(default_factory=list)


class ConversationRefPayload(StrictRequestModel):
    conversation_key: str = Field(..., min_length=1, max_length=64)


class ToggleReactionPayload(StrictRequestModel):
    message_id: int
    emoji: str = Field(..., min_length=1, max_length=MAX_EMOJI_LENGTH)


class MarkReadPayload(StrictRequestModel):
    conversation_key: str = Field(..., min_length=1, max_length=64)
    up_to_message_id: int = Field(..., ge=0)


class PresenceSnapshotRequestPayload(StrictRequestModel):
    channel_id: Optional[str] = None


class EmptyPayload(StrictRequestModel):
    pass


class SendDirectMessageCommand(_CommandEnvelope):
    type: Literal["send_direct_message"]
    payload: SendDirectMessagePayload


class SendChannelMessageCommand(_CommandEnvelope):
    type: Literal["send_channel_message"]
    payload: SendChannelMessagePayload


class TypingStartCommand(_CommandEnvelope):
    type: Literal["typing_start"]
    payload: ConversationRefPayload


class TypingStopCommand(_CommandEnvelope):
    type: Literal["typing_stop"]
    payload: ConversationRefPayload


class ToggleReactionCommand(_CommandEnvelope):
    type: Literal["toggle_reaction"]
    payload: ToggleReactionPayload


class MarkReadCommand(_CommandEnvelope):
    type: Literal["mark_read"]
    payload: MarkReadPayload


class JoinConversationCommand(_CommandEnvelope):
    type: Literal["join_conversation"]
    payload: ConversationRefPayload


class LeaveConversationCommand(_CommandEnvelope):
    type: Literal["leave_conversation"]
    payload: ConversationRefPayload


class PresenceSnapshotCommand(_CommandEnvelope):
    type: Literal["presence_snapshot"]
    payload: PresenceSnapshotRequestPayload = Field(default_factory=PresenceSnapshotRequestPayload)


class PingCommand(_CommandEnvelope):
    type: Literal["ping"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


ClientCommand = Annotated[
    Union[
        SendDirectMessageCommand,
        SendChannelMessageCommand,
        TypingStartCommand,
        TypingStopCommand,
        ToggleReactionCommand,
        MarkReadCommand,
        JoinConversationCommand,
        LeaveConversationCommand,
        PresenceSnapshotCommand,
        PingCommand,
    ],
    Field(discriminator="type"),
]

_client_command_adapter: TypeAdapter[Any] = TypeAdapter(ClientCommand)


# Server -> client


class _EventEnvelope(LenientModel):
    schema_version: int = SCHEMA_VERSION
    timestamp: Optional[datetime] = None


class MessageReceivedPayload(LenientModel):
    conversation_key: str
    message: MessagePayload
    client_id: Optional[str] = None


class MessageReadPayload(LenientModel):
    conversation_key: str
    user_id: str
    last_read_message_id: int


class TypingStartedPayload(LenientModel):
    conversation_key: str
    user_id: str
    ttl_seconds: Optional[float] = None


class TypingStoppedPayload(LenientModel):
    conversation_key: str
    user_id: str


class PresenceDeltaPayload(LenientModel):
    user_id: str
    online: bool
    version: int


class PresenceSnapshotPayload(LenientModel):
    online: List[str]
    versions: Dict[str, int] = Field(default_factory=dict)
    version: int = 0


class UserMutedPayload(LenientModel):
    user_id: str
    muted_until: Optional[datetime] = None
    reason: Optional[str] = None


class UserUnmutedPayload(LenientModel):
    user_id: str


class ReactionUpdatedPayload(LenientModel):
    conversation_key: str
    message_id: int
    reactions: List[ReactionGroup]
    user_id: str
    emoji: str
    action: Literal["added", "removed"]


class SendAckPayload(LenientModel):
    client_id: Optional[str] = None
    message_id: int
    conversation_key: str


class SendRejectedPayload(LenientModel):
    client_id: Optional[str] = None
    reason: str
    message: str


class ErrorPayload(LenientModel):
    code: str
    message: str


class ConnectedPayload(LenientModel):
    user_id: str
    connection_id: str
    heartbeat_interval: int


class HeartbeatPayload(LenientModel):
    pass


class MessageReceivedEvent(_EventEnvelope):
    type: Literal["message_received"]
    payload: MessageReceivedPayload


class MessageReadEvent(_EventEnvelope):
    type: Literal["message_read"]
    payload: MessageReadPayload


class TypingStartedEvent(_EventEnvelope):
    type: Literal["typing_started"]
    payload: TypingStartedPayload


class TypingStoppedEvent(_EventEnvelope):
    type: Literal["typing_stopped"]
    payload: TypingStoppedPayload


class PresenceDeltaEvent(_EventEnvelope):
    type: Literal["presence_delta"]
    payload: PresenceDeltaPayload


class PresenceSnapshotEvent(_EventEnvelope):
    type: Literal["presence_snapshot"]
    payload: PresenceSnapshotPayload


class UserMutedEvent(_EventEnvelope):
    type: Literal["user_muted"]
    payload: UserMutedPayload


class UserUnmutedEvent(_EventEnvelope):
    type: Literal["user_unmuted"]
    payload: UserUnmutedPayload


class ReactionUpdatedEvent(_EventEnvelope):
    type: Literal["reaction_updated"]
    payload: ReactionUpdatedPayload


class SendAckEvent(_EventEnvelope):
    type: Literal["send_ack"]
    payload: SendAckPayload


class SendRejectedEvent(_EventEnvelope):
    type: Literal["send_rejected"]
    payload: SendRejectedPayload


class ErrorEvent(_EventEnvelope):
    type: Literal["error"]
    payload: ErrorPayload


class ConnectedEvent(_EventEnvelope):
    type: Literal["connected"]
    payload: ConnectedPayload


class HeartbeatEvent(_EventEnvelope):
    type: Literal["heartbeat"]
    payload: HeartbeatPayload = Field(default_factory=HeartbeatPayload)


ServerEvent = Annotated[
    Union[
        MessageReceivedEvent,
        MessageReadEvent,
        TypingStartedEvent,
        TypingStoppedEvent,
        PresenceDeltaEvent,
        PresenceSnapshotEvent,
        UserMutedEvent,
        UserUnmutedEvent,
        ReactionUpdatedEvent,
        SendAckEvent,
        SendRejectedEvent,
        ErrorEvent,
        ConnectedEvent,
        HeartbeatEvent,
    ],
    Field(discriminator="type"),
]

_server_event_adapter: TypeAdapter[Any] = TypeAdapter(ServerEvent)


def _load(frame: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(frame, (str, bytes)):
        data = json.loads(frame)
    else:
        data = frame
    if not isinstance(data, dict):
        raise ValueError("Frame must be a JSON object")
    return data


def parse_client_command(frame: Union[str, bytes, Dict[str, Any]]) -> Any:
    """
    Validate a client frame into one of the ``ClientCommand`` variants.

    Raises:
        ValueError / pydantic.ValidationError: Malformed or unknown frame
    """
    return _client_command_adapter.validate_python(_load(frame))


def parse_server_event(frame: Union[str, bytes, Dict[str, Any]]) -> Any:
    """Validate a server frame into one of the ``ServerEvent`` variants."""
    return _server_event_adapter.validate_python(_load(frame))


def build_command(command_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Client-side envelope builder for outbound commands."""
    return {
        "type": command_type,
        "schema_version": SCHEMA_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
