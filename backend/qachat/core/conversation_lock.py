"""
Per-conversation mutual exclusion for ordering-id assignment.

Two layers guard the ordering counter of a conversation:

* an in-process keyed lock, so concurrent sends handled by the same worker
  queue up instead of racing for the conversation row;
* a ``SELECT ... FOR UPDATE`` on the conversation row inside the send
  transaction, which serializes writers across workers.

Reactions and read cursors are commutative and never take this lock.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Dict, Iterator

from qachat.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLock:
    """Reference-counted lock table; entries vanish once nobody holds or waits."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1

        contended = not entry.lock.acquire(blocking=False)
        if contended:
            prometheus_metrics.record_conversation_lock("contended")
            entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


conversation_locks = KeyedLock()
