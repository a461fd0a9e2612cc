# backend/qachat/core/enums.py
"""
Core enums for the messaging core.

Closed value sets shared by models, services and the wire protocol.
"""

from enum import Enum


class RoleName(str, Enum):
    """
    Role names issued by the identity subsystem.

    The set is closed; the messaging core never creates roles.
    """

    ADMIN = "admin"
    DEVELOPER = "developer"
    TESTER = "tester"


class ConversationKind(str, Enum):
    """Kinds of conversation a message can belong to."""

    DIRECT = "direct"
    CHANNEL = "channel"


class RejectionReason(str, Enum):
    """Why the message router refused a send."""

    NOT_A_MEMBER = "not_a_member"
    MUTED = "muted"
    EMPTY_BODY = "empty_body"
    BODY_TOO_LONG = "body_too_long"
    CHANNEL_LOCKED = "channel_locked"
    INVALID_REPLY = "invalid_reply"
    UNKNOWN_CONVERSATION = "unknown_conversation"
    SELF_CONVERSATION = "self_conversation"
    UNKNOWN_RECIPIENT = "unknown_recipient"
    CLIENT_ID_REUSED = "client_id_reused"


class ReactionAction(str, Enum):
    """Outcome of a reaction toggle."""

    ADDED = "added"
    REMOVED = "removed"


class AuditAction(str, Enum):
    """Moderation actions recorded in the audit log."""

    USER_MUTED = "user_muted"
    USER_UNMUTED = "user_unmuted"
    CHANNEL_LOCKED = "channel_locked"
    CHANNEL_UNLOCKED = "channel_unlocked"
    CHAT_DISABLED = "chat_disabled"
    CHAT_ENABLED = "chat_enabled"


class AuditTargetType(str, Enum):
    USER = "user"
    CHANNEL = "channel"
