# backend/qachat/client/mute.py
"""
Advisory mute state on the client.

Mirrors ``user_muted`` / ``user_unmuted`` events so the UI can disable the
composer. The server's mute gate remains the only binding check; both sides
evaluate the same rule through ``can_send``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from ..core.timezone_utils import ensure_utc, utc_now
from ..services.mute_gate import MuteDecision, can_send


@dataclass
class MuteRecord:
    is_muted: bool
    muted_until: Optional[datetime] = None
    reason: Optional[str] = None


class MuteState:
    def __init__(self) -> None:
        self._records: Dict[str, MuteRecord] = {}

    def apply_muted(
        self, user_id: str, muted_until: Optional[datetime], reason: Optional[str] = None
    ) -> None:
        self._records[user_id] = MuteRecord(
            is_muted=True, muted_until=ensure_utc(muted_until), reason=reason
        )

    def apply_unmuted(self, user_id: str) -> None:
        self._records.pop(user_id, None)

    def record_for(self, user_id: str) -> Optional[MuteRecord]:
        return self._records.get(user_id)

    def check(self, user_id: str, now: Optional[datetime] = None) -> MuteDecision:
        record = self._records.get(user_id) or MuteRecord(is_muted=False)
        return can_send(record, now or utc_now())


def advisory_can_send(state: MuteState, user_id: str, now: Optional[datetime] = None) -> bool:
    return state.check(user_id, now).allowed
