# backend/qachat/client/outbox.py
"""
Ordered outbox for sends made while the socket is unreliable.

Entries are replayed in the order they were created. A transport failure
retries the head entry with exponential backoff; after ``max_attempts`` the
entry is surfaced as failed instead of being dropped. A policy rejection
(``send_rejected``) is final and never retried.

Delivery is at-least-once: an entry that was written to the socket but not
acknowledged before a drop is replayed after reconnect.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 0.5
DEFAULT_MAX_DELAY = 8.0

# Errors that mean "the transport failed", as opposed to "the server said no".
TRANSPORT_ERRORS = (ConnectionError, OSError, asyncio.TimeoutError)


class EntryStatus(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"


@dataclass
class OutboxEntry:
    client_id: str
    conversation_key: Optional[str]
    frame: Dict[str, Any]
    attempts: int = 0
    status: EntryStatus = EntryStatus.QUEUED


FailureHandler = Callable[[OutboxEntry, str], None]
Send = Callable[[Dict[str, Any]], Awaitable[None]]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, ... capped."""
    return float(min(cap, base * (2 ** max(0, attempt - 1))))


class Outbox:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_failed: Optional[FailureHandler] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.on_failed = on_failed
        self._entries: List[OutboxEntry] = []
        self._drain_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[OutboxEntry]:
        return list(self._entries)

    def enqueue(
        self, client_id: str, frame: Dict[str, Any], conversation_key: Optional[str] = None
    ) -> OutboxEntry:
        entry = OutboxEntry(client_id=client_id, conversation_key=conversation_key, frame=frame)
        self._entries.append(entry)
        return entry

    def acknowledge(self, client_id: str) -> Optional[OutboxEntry]:
        return self._remove(client_id)

    def reject(self, client_id: str) -> Optional[OutboxEntry]:
        """Drop a rejected entry; rejections are not retried."""
        return self._remove(client_id)

    def requeue_in_flight(self) -> int:
        """After a drop, unacknowledged entries go back to the queue in place."""
        count = 0
        for entry in self._entries:
            if entry.status is EntryStatus.IN_FLIGHT:
                entry.status = EntryStatus.QUEUED
                count += 1
        return count

    async def drain(self, send: Send) -> int:
        """
        Write queued entries in order.

        Stops at the first entry whose retries are exhausted (it is surfaced
        as failed); later entries wait for the next drain so ordering holds.

        Returns:
            Number of entries written
        """
        written = 0
        async with self._drain_lock:
            while True:
                entry = self._next_queued()
                if entry is None:
                    return written
                try:
                    await send(entry.frame)
                except TRANSPORT_ERRORS as e:
                    entry.attempts += 1
                    if entry.attempts >= self.max_attempts:
                        self._fail(entry, str(e) or type(e).__name__)
                        return written
                    delay = backoff_delay(entry.attempts, self.base_delay, self.max_delay)
                    logger.info(
                        f"[OUTBOX] Send {entry.client_id} failed (attempt {entry.attempts}); "
                        f"retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
                    continue
                entry.status = EntryStatus.IN_FLIGHT
                written += 1

    def _next_queued(self) -> Optional[OutboxEntry]:
        for entry in self._entries:
            if entry.status is EntryStatus.QUEUED:
                return entry
        return None

    def _fail(self, entry: OutboxEntry, error: str) -> None:
        self._remove(entry.client_id)
        logger.warning(f"[OUTBOX] Giving up on {entry.client_id} after {entry.attempts} attempts")
        if self.on_failed is not None:
            self.on_failed(entry, error)

    def _remove(self, client_id: str) -> Optional[OutboxEntry]:
        for index, entry in enumerate(self._entries):
            if entry.client_id == client_id:
                return self._entries.pop(index)
        return None
