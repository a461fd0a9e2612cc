# backend/qachat/services/mute_gate.py
"""
Mute gate: decides whether an identity may send right now.

An identity is blocked iff ``is_muted`` and either the mute is indefinite
(``muted_until`` is None) or ``now < muted_until``. The decision depends only
on the moderation fields and the clock, so the server and the client compute
the same answer from the same state. Only the server's answer is binding.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..core.enums import RejectionReason
from ..core.timezone_utils import ensure_utc, utc_now


@dataclass(frozen=True)
class MuteDecision:
    allowed: bool
    reason: Optional[RejectionReason] = None
    muted_until: Optional[datetime] = None


ALLOWED = MuteDecision(allowed=True)


def can_send(identity: Any, now: datetime) -> MuteDecision:
    """
    Evaluate the mute window for anything carrying ``is_muted`` and
    ``muted_until`` (a User row or client-side moderation state).
    """
    if not getattr(identity, "is_muted", False):
        return ALLOWED
    until = ensure_utc(getattr(identity, "muted_until", None))
    if until is None or ensure_utc(now) < until:
        return MuteDecision(allowed=False, reason=RejectionReason.MUTED, muted_until=until)
    return ALLOWED


def mute_expired(identity: Any, now: datetime) -> bool:
    """A timed mute whose window has closed but whose flag is still set."""
    until = ensure_utc(getattr(identity, "muted_until", None))
    return bool(getattr(identity, "is_muted", False)) and until is not None and ensure_utc(now) >= until


class MuteGate:
    """Clock-bound wrapper used on the accept path."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def check(self, identity: Any) -> MuteDecision:
        return can_send(identity, self._clock())

    def is_expired(self, identity: Any) -> bool:
        return mute_expired(identity, self._clock())
