"""Client-side reconciliation layer for the realtime socket."""

from .mute import MuteState, advisory_can_send
from .outbox import Outbox, OutboxEntry
from .presence import PresenceView
from .realtime_client import RealtimeClient
from .timeline import ConversationTimeline, PendingStatus, TimelineCorrupted, TimelineState
from .transport import HistoryApi, HistoryPage, TransportClosed, WebSocketTransport
from .typing_view import TypingView

__all__ = [
    "ConversationTimeline",
    "HistoryApi",
    "HistoryPage",
    "MuteState",
    "Outbox",
    "OutboxEntry",
    "PendingStatus",
    "PresenceView",
    "RealtimeClient",
    "TimelineCorrupted",
    "TimelineState",
    "TransportClosed",
    "TypingView",
    "advisory_can_send",
]
