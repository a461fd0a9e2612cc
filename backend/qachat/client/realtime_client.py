# backend/qachat/client/realtime_client.py
"""
Realtime client: reconciliation layer over one socket.

Owns the transport, the per-conversation timelines, the presence and typing
views, the advisory mute state and the outbox.

Reconnect sequence (after any transport drop):
  1. Mark every open timeline RECONNECTING; unacknowledged sends are requeued
  2. Reconnect with exponential backoff
  3. For each open conversation, page history after the highest known id
     until exhausted, then re-join it; timelines go LIVE again. Own sends
     found in the backfill settle their outbox entries. A conversation the
     server no longer shows is dropped without affecting the others
  4. Ask for a fresh presence snapshot
  5. Replay the outbox in original order
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..core.enums import ConversationKind
from ..core.ulid_helper import generate_ulid
from ..models.conversation import parse_conversation_key
from ..schemas.realtime import build_command, parse_server_event
from .mute import MuteState, advisory_can_send
from .outbox import TRANSPORT_ERRORS, Outbox, OutboxEntry, backoff_delay
from .presence import PresenceView
from .timeline import ConversationTimeline, PendingStatus, TimelineState
from .transport import ConversationUnavailable, HistorySource, Transport, TransportClosed
from .typing_view import TypingView

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_BASE_DELAY = 0.5
DEFAULT_RECONNECT_MAX_DELAY = 10.0
DEFAULT_PAGE_SIZE = 50

SendFailedHandler = Callable[[str, Optional[str], str], None]


class RealtimeClient:
    def __init__(
        self,
        user_id: str,
        transport: Transport,
        history: HistorySource,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        reconnect_base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        outbox: Optional[Outbox] = None,
        typing_view: Optional[TypingView] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_send_failed: Optional[SendFailedHandler] = None,
    ):
        self.user_id = user_id
        self.transport = transport
        self.history = history
        self.page_size = page_size
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.timelines: Dict[str, ConversationTimeline] = {}
        self.presence = PresenceView()
        self.typing = typing_view if typing_view is not None else TypingView()
        self.mute = MuteState()
        self.outbox = outbox if outbox is not None else Outbox(sleep=sleep)
        self.outbox.on_failed = self._on_outbox_failed
        self.read_positions: Dict[str, Dict[str, int]] = {}
        self.connected = False
        self.connection_id: Optional[str] = None
        self.last_error: Optional[Dict[str, Any]] = None
        self._sleep = sleep
        self._on_send_failed = on_send_failed
        self._closed = False
        self._rebuild_needed: set[str] = set()
        # conversation_key -> HTTP status of the refusal
        self.unavailable: Dict[str, int] = {}

    # Connection lifecycle

    async def connect(self) -> None:
        await self.transport.connect()
        self.connected = True

    async def run(self) -> None:
        """Connect, process events, and reconnect with backoff until closed."""
        attempt = 0
        while not self._closed:
            try:
                await self.reconnect()
                attempt = 0
                await self._receive_until_closed()
            except TRANSPORT_ERRORS as e:
                logger.info(f"[CLIENT] Transport error: {e}")
            if self._closed:
                break
            self.handle_disconnect()
            attempt += 1
            delay = backoff_delay(attempt, self.reconnect_base_delay, self.reconnect_max_delay)
            logger.info(f"[CLIENT] Reconnecting in {delay:.1f}s (attempt {attempt})")
            await self._sleep(delay)

    async def reconnect(self) -> None:
        """Connect and run the gap-fill sequence; also used for the first connect."""
        await self.connect()
        await self._resync()

    def handle_disconnect(self) -> None:
        self.connected = False
        for timeline in self.timelines.values():
            timeline.mark_reconnecting()
        self.outbox.requeue_in_flight()

    async def close(self) -> None:
        self._closed = True
        self.connected = False
        await self.transport.close()

    async def _receive_until_closed(self) -> None:
        while not self._closed:
            try:
                frame = await self.transport.recv()
            except ValueError as e:
                logger.warning(f"[CLIENT] Dropped undecodable frame: {e}")
                continue
            await self.handle_frame(frame)

    async def _resync(self) -> None:
        for key, timeline in list(self.timelines.items()):
            try:
                if not timeline.is_consistent() or key in self._rebuild_needed:
                    await self._rebuild(timeline)
                elif timeline.state is not TimelineState.LIVE:
                    await self._fill_gap(timeline)
            except ConversationUnavailable as e:
                self._drop_unavailable(e)
                continue
            await self._send(build_command("join_conversation", {"conversation_key": key}))
            timeline.go_live()
        await self._send(build_command("presence_snapshot", {}))
        await self.outbox.drain(self._send)

    async def _fill_gap(self, timeline: ConversationTimeline) -> int:
        """Page forward from the highest known id until the server has no more."""
        added = 0
        after = timeline.highest_id
        while True:
            page = await self.history.fetch(
                timeline.conversation_key, limit=self.page_size, after=after
            )
            added += timeline.merge(page.messages)
            self._settle_own_sends(page.messages)
            if not page.messages or not page.has_more:
                break
            after = max(m.id for m in page.messages)
        if added:
            logger.info(f"[CLIENT] Backfilled {added} messages in {timeline.conversation_key}")
        return added

    async def _rebuild(self, timeline: ConversationTimeline) -> None:
        page = await self.history.fetch(timeline.conversation_key, limit=self.page_size)
        timeline.rebuild(page.messages)
        self._settle_own_sends(page.messages)
        self._rebuild_needed.discard(timeline.conversation_key)

    async def _send(self, frame: Dict[str, Any]) -> None:
        if not self.connected:
            raise TransportClosed("Not connected")
        await self.transport.send(frame)

    # Conversations

    async def open_conversation(self, conversation_key: str) -> ConversationTimeline:
        """LOADING -> fetch recent history -> join -> LIVE."""
        timeline = self.timelines.get(conversation_key)
        if timeline is None:
            timeline = ConversationTimeline(conversation_key)
            self.timelines[conversation_key] = timeline
        try:
            page = await self.history.fetch(conversation_key, limit=self.page_size)
        except ConversationUnavailable as e:
            self._drop_unavailable(e)
            raise
        self.unavailable.pop(conversation_key, None)
        timeline.merge(page.messages)
        self._settle_own_sends(page.messages)
        if self.connected:
            await self._send(build_command("join_conversation", {"conversation_key": conversation_key}))
            timeline.go_live()
        return timeline

    async def close_conversation(self, conversation_key: str) -> None:
        """Unsubscribe; queued and in-flight sends are left untouched."""
        self.timelines.pop(conversation_key, None)
        if self.connected:
            try:
                await self._send(
                    build_command("leave_conversation", {"conversation_key": conversation_key})
                )
            except TRANSPORT_ERRORS as e:
                logger.debug(f"[CLIENT] leave_conversation not delivered: {e}")

    # Commands

    def can_send(self) -> bool:
        """Advisory only; the server's mute gate decides."""
        return advisory_can_send(self.mute, self.user_id)

    async def send_message(
        self, conversation_key: str, body: str, reply_to_id: Optional[int] = None
    ) -> str:
        """
        Queue a send with an optimistic timeline entry.

        Returns:
            The client_id correlating the optimistic entry with its ack
        """
        client_id = generate_ulid()
        kind, parts = parse_conversation_key(conversation_key)
        payload: Dict[str, Any] = {"body": body, "client_id": client_id, "reply_to_id": reply_to_id}
        if kind is ConversationKind.DIRECT:
            others = [p for p in parts if p != self.user_id]
            payload["recipient_id"] = others[0] if others else self.user_id
            frame = build_command("send_direct_message", payload)
        else:
            payload["channel_id"] = parts[0]
            frame = build_command("send_channel_message", payload)

        timeline = self.timelines.get(conversation_key)
        if timeline is not None:
            timeline.add_pending(client_id, self.user_id, body, reply_to_id)
        self.outbox.enqueue(client_id, frame, conversation_key)
        if self.connected:
            await self.outbox.drain(self._send)
        return client_id

    async def toggle_reaction(self, conversation_key: str, message_id: int, emoji: str) -> None:
        timeline = self.timelines.get(conversation_key)
        if timeline is not None:
            timeline.toggle_reaction_optimistic(message_id, emoji, self.user_id)
        try:
            await self._send(build_command("toggle_reaction", {"message_id": message_id, "emoji": emoji}))
        except TRANSPORT_ERRORS as e:
            logger.info(f"[CLIENT] Reaction toggle not delivered: {e}")

    async def mark_read(self, conversation_key: str, up_to_message_id: int) -> None:
        """Socket when connected, REST fallback otherwise."""
        if self.connected:
            try:
                await self._send(
                    build_command(
                        "mark_read",
                        {"conversation_key": conversation_key, "up_to_message_id": up_to_message_id},
                    )
                )
                return
            except TRANSPORT_ERRORS:
                logger.info("[CLIENT] mark_read falling back to REST")
        position = await self.history.mark_read(conversation_key, up_to_message_id)
        self._record_read(conversation_key, self.user_id, position)

    async def typing(self, conversation_key: str, active: bool = True) -> None:
        command = "typing_start" if active else "typing_stop"
        try:
            await self._send(build_command(command, {"conversation_key": conversation_key}))
        except TRANSPORT_ERRORS:
            # Typing is best-effort
            pass

    # Inbound

    async def handle_frame(self, frame: Dict[str, Any]) -> None:
        try:
            event = parse_server_event(frame)
        except (ValidationError, ValueError) as e:
            logger.warning(f"[CLIENT] Ignoring malformed server frame: {e}")
            return
        handler = getattr(self, f"_on_{event.type}", None)
        if handler is not None:
            handler(event.payload)
        for key in list(self._rebuild_needed):
            timeline = self.timelines.get(key)
            if timeline is None:
                self._rebuild_needed.discard(key)
            elif self.connected:
                try:
                    await self._rebuild(timeline)
                except TRANSPORT_ERRORS as e:
                    logger.warning(f"[CLIENT] Rebuild of {key} deferred: {e}")
                except ConversationUnavailable as e:
                    self._drop_unavailable(e)

    def _on_message_received(self, payload: Any) -> None:
        timeline = self.timelines.get(payload.conversation_key)
        if timeline is None:
            return
        timeline.apply_message(payload.message, payload.client_id)
        if not timeline.is_consistent():
            self._rebuild_needed.add(payload.conversation_key)

    def _on_send_ack(self, payload: Any) -> None:
        if payload.client_id:
            self.outbox.acknowledge(payload.client_id)

    def _on_send_rejected(self, payload: Any) -> None:
        if not payload.client_id:
            return
        entry = self.outbox.reject(payload.client_id)
        for timeline in self.timelines.values():
            timeline.mark_pending(payload.client_id, PendingStatus.REJECTED, payload.reason)
        logger.info(
            f"[CLIENT] Send {payload.client_id} rejected: {payload.reason}",
            extra={"conversation_key": entry.conversation_key if entry else None},
        )

    def _on_reaction_updated(self, payload: Any) -> None:
        timeline = self.timelines.get(payload.conversation_key)
        if timeline is not None:
            timeline.apply_reactions(payload.message_id, payload.reactions, payload.emoji)

    def _on_message_read(self, payload: Any) -> None:
        self._record_read(payload.conversation_key, payload.user_id, payload.last_read_message_id)

    def _on_typing_started(self, payload: Any) -> None:
        self.typing.on_started(payload.conversation_key, payload.user_id, payload.ttl_seconds)

    def _on_typing_stopped(self, payload: Any) -> None:
        self.typing.on_stopped(payload.conversation_key, payload.user_id)

    def _on_presence_delta(self, payload: Any) -> None:
        self.presence.apply_delta(payload.user_id, payload.online, payload.version)
        if not payload.online:
            self.typing.forget_user(payload.user_id)

    def _on_presence_snapshot(self, payload: Any) -> None:
        self.presence.apply_snapshot(payload.online, payload.versions, payload.version)

    def _on_user_muted(self, payload: Any) -> None:
        self.mute.apply_muted(payload.user_id, payload.muted_until, payload.reason)

    def _on_user_unmuted(self, payload: Any) -> None:
        self.mute.apply_unmuted(payload.user_id)

    def _on_connected(self, payload: Any) -> None:
        self.connection_id = payload.connection_id

    def _on_error(self, payload: Any) -> None:
        self.last_error = {"code": payload.code, "message": payload.message}
        logger.info(f"[CLIENT] Server error {payload.code}: {payload.message}")

    def _on_heartbeat(self, payload: Any) -> None:
        return None

    # Helpers

    def _drop_unavailable(self, error: ConversationUnavailable) -> None:
        key = error.conversation_key
        self.timelines.pop(key, None)
        self._rebuild_needed.discard(key)
        self.unavailable[key] = error.status_code
        logger.warning(f"[CLIENT] Dropped timeline {key}: {error}")

    def _settle_own_sends(self, messages: List[Any]) -> None:
        """Sends that reached the server before a drop must not be replayed."""
        for message in messages:
            if message.client_id and message.sender_id == self.user_id:
                self.outbox.acknowledge(message.client_id)

    def _record_read(self, conversation_key: str, user_id: str, position: int) -> None:
        positions = self.read_positions.setdefault(conversation_key, {})
        positions[user_id] = max(positions.get(user_id, 0), int(position))

    def _on_outbox_failed(self, entry: OutboxEntry, error: str) -> None:
        timeline = self.timelines.get(entry.conversation_key or "")
        if timeline is not None:
            timeline.mark_pending(entry.client_id, PendingStatus.FAILED, error)
        if self._on_send_failed is not None:
            self._on_send_failed(entry.client_id, entry.conversation_key, error)

    def failed_sends(self) -> List[str]:
        return [
            p.client_id
            for t in self.timelines.values()
            for p in t.pending
            if p.status is PendingStatus.FAILED
        ]
