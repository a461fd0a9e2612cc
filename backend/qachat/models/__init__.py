"""ORM models; importing this package registers every table on Base.metadata."""

from .audit_log import ModerationAuditLog
from .conversation import ChannelMember, Conversation
from .message import Message, MessageReaction
from .read_cursor import ReadCursor
from .user import User

__all__ = [
    "User",
    "Conversation",
    "ChannelMember",
    "Message",
    "MessageReaction",
    "ReadCursor",
    "ModerationAuditLog",
]
