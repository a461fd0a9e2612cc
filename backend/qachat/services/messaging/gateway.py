# backend/qachat/services/messaging/gateway.py
"""
WebSocket session loop.

One full-duplex socket per client session carries every conversation,
presence and typing signal:

  1. Authenticate the bearer token (query ``token`` or Authorization header)
  2. Subscribe to ``user:<id>`` and ``presence`` on the shared Broadcaster
  3. Register the connection (presence may flip online)
  4. Send ``connected`` and an initial presence snapshot
  5. Run the receive loop (commands, idle timeout) and the write loop
     (fan-out events, heartbeats) until either ends
  6. Unregister exactly once, whichever way the socket ended

Each command gets its own short-lived DB session; nothing holds a session
open for the life of the socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import HTTPException, WebSocket, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ...auth import user_id_from_token
from ...core.broadcast import get_broadcast
from ...core.config import settings
from ...core.constants import PRESENCE_CHANNEL
from ...core.enums import ConversationKind
from ...core.exceptions import DomainException, ForbiddenException, MessageRejected, NotFoundException
from ...core.ulid_helper import generate_ulid
from ...models.conversation import channel_conversation_key, parse_conversation_key
from ...repositories.factory import RepositoryFactory
from ...schemas.realtime import parse_client_command
from ..directory_service import DirectoryService
from ..message_router import MessageRouter
from ..reaction_service import ReactionService
from ..read_receipt_service import ReadReceiptService
from .events import (
    CONVERSATION_SCOPED_EVENTS,
    build_connected_event,
    build_error_event,
    build_heartbeat_event,
    build_presence_snapshot_event,
    build_send_ack_event,
    build_send_rejected_event,
)
from .hub import RealtimeHub
from .publisher import user_channel

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _token_from_websocket(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _authenticate(session_factory: SessionFactory, token: Optional[str]) -> Optional[str]:
    """Resolve a token to an active user id, or None."""
    try:
        user_id = user_id_from_token(token)
    except HTTPException:
        return None
    db = session_factory()
    try:
        user = RepositoryFactory.create_user_repository(db).get_active(user_id)
        return str(user.id) if user else None
    finally:
        db.close()


class GatewaySession:
    """State of one accepted socket."""

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        hub: RealtimeHub,
        session_factory: SessionFactory,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.connection_id = generate_ulid()
        self.hub = hub
        self.session_factory = session_factory
        self._send_lock = asyncio.Lock()
        self._queue: asyncio.Queue[Tuple[str, Any]] = asyncio.Queue()

    async def run(self) -> None:
        try:
            broadcast = get_broadcast()
        except RuntimeError as e:
            logger.error(f"[WS] Broadcast unavailable for {self.user_id}: {e}")
            await self.send(build_error_event("service_unavailable", "Realtime service unavailable"))
            await self._close(status.WS_1011_INTERNAL_ERROR)
            return

        async with broadcast.subscribe(channel=user_channel(self.user_id)) as user_sub:
            async with broadcast.subscribe(channel=PRESENCE_CHANNEL) as presence_sub:
                readers = [
                    asyncio.create_task(self._reader(user_sub)),
                    asyncio.create_task(self._reader(presence_sub)),
                ]
                self.hub.connect(self.user_id, self.connection_id)
                try:
                    await self.send(
                        build_connected_event(
                            self.user_id, self.connection_id, settings.ws_heartbeat_interval
                        )
                    )
                    await self._send_presence_snapshot(None)
                    await self._pump()
                finally:
                    self.hub.disconnect(self.connection_id)
                    for reader in readers:
                        reader.cancel()
                    for reader in readers:
                        with contextlib.suppress(asyncio.CancelledError):
                            await reader
        logger.info(f"[WS] Session closed for {self.user_id}", extra={"user_id": self.user_id})

    async def _reader(self, subscriber: Any) -> None:
        """Forward Broadcaster events into the write queue."""
        try:
            async for event in subscriber:
                await self._queue.put(("message", event.message))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._queue.put(("error", e))

    async def _pump(self) -> None:
        receiver = asyncio.create_task(self._receive_loop())
        writer = asyncio.create_task(self._write_loop())
        done, pending = await asyncio.wait({receiver, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"[WS] Session loop failed for {self.user_id}: {exc}", exc_info=exc)

    # Outbound

    async def send(self, event: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(event))

    async def _write_loop(self) -> None:
        heartbeat = settings.ws_heartbeat_interval
        while True:
            try:
                kind, data = await asyncio.wait_for(self._queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                await self.send(build_heartbeat_event())
                continue

            if kind == "error":
                logger.error(f"[WS] Subscription error for {self.user_id}: {data}")
                await self._close(status.WS_1011_INTERNAL_ERROR)
                return
            try:
                event = json.loads(data)
            except (TypeError, json.JSONDecodeError) as e:
                logger.warning(f"[WS] Invalid JSON from fan-out: {e}")
                continue
            if self._should_deliver(event):
                await self.send(event)

    def _should_deliver(self, event: Dict[str, Any]) -> bool:
        if event.get("type") not in CONVERSATION_SCOPED_EVENTS:
            return True
        key = (event.get("payload") or {}).get("conversation_key")
        return bool(key) and self.hub.registry.is_subscribed(self.connection_id, key)

    # Inbound

    async def _receive_loop(self) -> None:
        idle_timeout = settings.ws_idle_timeout_seconds
        while True:
            try:
                message = await asyncio.wait_for(self.websocket.receive(), timeout=idle_timeout)
            except asyncio.TimeoutError:
                logger.info(f"[WS] Idle timeout for connection {self.connection_id}")
                await self._close(status.WS_1001_GOING_AWAY)
                return

            if message.get("type") == "websocket.disconnect":
                return
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue

            try:
                command = parse_client_command(raw)
            except (ValidationError, ValueError) as e:
                logger.info(f"[WS] Rejected malformed frame from {self.user_id}: {e}")
                await self.send(build_error_event("invalid_frame", "Malformed or unknown command"))
                continue

            try:
                await self._dispatch(command)
            except DomainException as e:
                await self.send(build_error_event(e.code, e.message))
            except WebSocketDisconnect:
                return
            except Exception:
                logger.exception(f"[WS] Command {command.type} failed for {self.user_id}")
                await self.send(build_error_event("internal_error", "Command failed"))

    async def _dispatch(self, command: Any) -> None:
        handler = getattr(self, f"_on_{command.type}")
        await handler(command.payload)

    async def _on_send_direct_message(self, payload: Any) -> None:
        await self._send_message(
            lambda router: router.send_direct(
                self.user_id,
                payload.recipient_id,
                payload.body,
                reply_to_id=payload.reply_to_id,
                attachments=[a.model_dump(exclude_none=True) for a in payload.attachments],
                client_id=payload.client_id,
            ),
            payload.client_id,
        )

    async def _on_send_channel_message(self, payload: Any) -> None:
        await self._send_message(
            lambda router: router.send(
                channel_conversation_key(payload.channel_id),
                self.user_id,
                payload.body,
                reply_to_id=payload.reply_to_id,
                attachments=[a.model_dump(exclude_none=True) for a in payload.attachments],
                client_id=payload.client_id,
            ),
            payload.client_id,
        )

    async def _send_message(self, call: Callable[[MessageRouter], Any], client_id: Optional[str]) -> None:
        db = self.session_factory()
        try:
            message = await call(MessageRouter(db))
        except MessageRejected as e:
            await self.send(build_send_rejected_event(client_id, e.reason.value, e.message))
            return
        finally:
            db.close()
        await self.send(build_send_ack_event(client_id, message))

    async def _on_typing_start(self, payload: Any) -> None:
        participants = await self._participants(payload.conversation_key)
        await self.hub.typing.start_typing(payload.conversation_key, self.user_id, participants)

    async def _on_typing_stop(self, payload: Any) -> None:
        participants = await self._participants(payload.conversation_key)
        await self.hub.typing.stop_typing(payload.conversation_key, self.user_id, participants)

    async def _on_toggle_reaction(self, payload: Any) -> None:
        db = self.session_factory()
        try:
            await ReactionService(db).toggle(payload.message_id, self.user_id, payload.emoji)
        finally:
            db.close()

    async def _on_mark_read(self, payload: Any) -> None:
        db = self.session_factory()
        try:
            await ReadReceiptService(db).mark_read_and_notify(
                self.user_id, payload.conversation_key, payload.up_to_message_id
            )
        finally:
            db.close()

    async def _on_join_conversation(self, payload: Any) -> None:
        await self._participants(payload.conversation_key)
        self.hub.registry.subscribe(self.connection_id, payload.conversation_key)

    async def _on_leave_conversation(self, payload: Any) -> None:
        self.hub.registry.unsubscribe(self.connection_id, payload.conversation_key)

    async def _on_presence_snapshot(self, payload: Any) -> None:
        await self._send_presence_snapshot(payload.channel_id)

    async def _on_ping(self, payload: Any) -> None:
        await self.send(build_heartbeat_event())

    # Helpers

    async def _participants(self, conversation_key: str) -> List[str]:
        """
        Participants of a conversation the caller belongs to.

        Raises:
            NotFoundException / ForbiddenException
        """
        return await asyncio.to_thread(self._participants_sync, conversation_key)

    def _participants_sync(self, conversation_key: str) -> List[str]:
        try:
            kind, parts = parse_conversation_key(conversation_key)
        except ValueError:
            raise NotFoundException("Conversation not found", code="unknown_conversation")
        db = self.session_factory()
        try:
            repo = RepositoryFactory.create_conversation_repository(db)
            conversation = repo.get_by_key(conversation_key)
            if conversation is None:
                if kind is ConversationKind.DIRECT and self.user_id in parts:
                    return list(parts)
                raise NotFoundException("Conversation not found", code="unknown_conversation")
            if not repo.is_participant(conversation, self.user_id):
                raise ForbiddenException(
                    "You are not a participant in this conversation", code="not_a_member"
                )
            return repo.participant_ids(conversation)
        finally:
            db.close()

    async def _send_presence_snapshot(self, channel_id: Optional[str]) -> None:
        scope = await asyncio.to_thread(self._presence_scope, channel_id)
        snapshot = self.hub.presence.snapshot(scope)
        await self.send(
            build_presence_snapshot_event(snapshot.online, snapshot.versions, snapshot.version)
        )

    def _presence_scope(self, channel_id: Optional[str]) -> List[str]:
        db = self.session_factory()
        try:
            if channel_id:
                key = channel_conversation_key(channel_id)
                repo = RepositoryFactory.create_conversation_repository(db)
                if repo.get_by_key(key) is None:
                    raise NotFoundException("Channel not found")
                if not repo.is_channel_member(key, self.user_id):
                    raise ForbiddenException("You are not a member of this channel")
                return repo.get_member_ids(key)
            return DirectoryService(db).contact_ids(self.user_id)
        finally:
            db.close()

    async def _close(self, code: int) -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code)


async def serve_websocket(
    websocket: WebSocket,
    hub: RealtimeHub,
    session_factory: SessionFactory,
) -> None:
    """Entry point for the realtime endpoint."""
    user_id = await asyncio.to_thread(
        _authenticate, session_factory, _token_from_websocket(websocket)
    )
    if user_id is None:
        logger.info("[WS] Rejected unauthenticated socket")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = GatewaySession(websocket, user_id, hub, session_factory)
    try:
        await session.run()
    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {user_id}")
