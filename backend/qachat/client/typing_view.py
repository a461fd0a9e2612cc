# backend/qachat/client/typing_view.py
"""Client typing view: indicators disappear on stop or when their TTL runs out."""

import time
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import settings


class TypingView:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        default_ttl: Optional[float] = None,
    ):
        self._clock = clock
        self._default_ttl = float(default_ttl if default_ttl is not None else settings.typing_ttl_seconds)
        self._expires: Dict[Tuple[str, str], float] = {}

    def on_started(self, conversation_key: str, user_id: str, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        self._expires[(conversation_key, user_id)] = self._clock() + ttl

    def on_stopped(self, conversation_key: str, user_id: str) -> None:
        self._expires.pop((conversation_key, user_id), None)

    def typing_in(self, conversation_key: str) -> List[str]:
        now = self._clock()
        return sorted(
            uid for (key, uid), expires_at in self._expires.items()
            if key == conversation_key and expires_at > now
        )

    def forget_user(self, user_id: str) -> None:
        for entry in [k for k in self._expires if k[1] == user_id]:
            del self._expires[entry]

    def prune(self) -> int:
        now = self._clock()
        expired = [k for k, expires_at in self._expires.items() if expires_at <= now]
        for entry in expired:
            del self._expires[entry]
        return len(expired)
