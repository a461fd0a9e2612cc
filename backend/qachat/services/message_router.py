# backend/qachat/services/message_router.py
"""
Message Router.

The authoritative accept path for every send:

1. Validate the body (trimmed, non-empty, bounded length)
2. Resolve the conversation (direct pairs are created on first use)
3. Check participation, channel switches and the mute gate
4. Check that a reply target lives in the same conversation
5. Assign the ordering id under the per-conversation lock and commit
6. Only after the commit, fan out ``message_received`` to every participant,
   the sender's other tabs included

A send that repeats a client_id the sender already used is answered with the
stored message and is neither inserted nor published again.

A persistence failure raises before anything is published. Policy refusals
raise ``MessageRejected`` with a ``RejectionReason``.
"""

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, NoReturn, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.conversation_lock import KeyedLock, conversation_locks
from ..core.enums import ConversationKind, RejectionReason
from ..core.exceptions import ForbiddenException, MessageRejected, NotFoundException
from ..models.conversation import Conversation, direct_conversation_key, parse_conversation_key
from ..models.message import Message
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .messaging.events import build_message_received_event, build_user_unmuted_event
from .messaging.publisher import publish_global, publish_to_users
from .mute_gate import MuteGate

logger = logging.getLogger(__name__)

Publish = Callable[[Iterable[str], Dict[str, Any]], Awaitable[None]]
PublishAll = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class AcceptedMessage:
    """A committed message plus what the fan-out step needs, without DB access."""

    message: Message
    participant_ids: List[str]
    event: Dict[str, Any]
    unmuted_sender: bool = False
    replayed: bool = False


class MessageRouter(BaseService):
    """Accepts, persists and fans out messages."""

    def __init__(
        self,
        db: Session,
        publish: Publish = publish_to_users,
        publish_all: PublishAll = publish_global,
        mute_gate: Optional[MuteGate] = None,
        locks: Optional[KeyedLock] = None,
        max_length: Optional[int] = None,
    ):
        super().__init__(db)
        self.conversation_repository = RepositoryFactory.create_conversation_repository(db)
        self.message_repository = RepositoryFactory.create_message_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.mute_gate = mute_gate if mute_gate is not None else MuteGate()
        self.max_length = max_length or settings.message_max_length
        self._publish = publish
        self._publish_all = publish_all
        self._locks = locks if locks is not None else conversation_locks

    # Async entry points

    async def send(
        self,
        conversation_key: str,
        sender_id: str,
        body: str,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """
        Accept a message into an existing conversation and fan it out.

        Raises:
            MessageRejected: The send was refused by policy
        """
        accepted = await asyncio.to_thread(
            self.accept, conversation_key, sender_id, body, reply_to_id, attachments, client_id
        )
        await self._fan_out(accepted)
        return accepted.message

    async def send_direct(
        self,
        sender_id: str,
        recipient_id: str,
        body: str,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        client_id: Optional[str] = None,
    ) -> Message:
        """Send to a direct pair, creating the conversation on first use."""
        accepted = await asyncio.to_thread(
            self.accept_direct, sender_id, recipient_id, body, reply_to_id, attachments, client_id
        )
        await self._fan_out(accepted)
        return accepted.message

    async def _fan_out(self, accepted: AcceptedMessage) -> None:
        if accepted.replayed:
            return
        await self._publish(accepted.participant_ids, accepted.event)
        if accepted.unmuted_sender:
            await self._publish_all(build_user_unmuted_event(str(accepted.message.sender_id)))
        logger.info(
            f"[ROUTER] Fanned out message {accepted.message.id}",
            extra={
                "conversation_key": accepted.message.conversation_key,
                "message_id": accepted.message.id,
                "recipients": len(accepted.participant_ids),
            },
        )

    # Sync accept path (runs in a worker thread)

    @BaseService.measure_operation("accept_direct")
    def accept_direct(
        self,
        sender_id: str,
        recipient_id: str,
        body: str,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        client_id: Optional[str] = None,
    ) -> AcceptedMessage:
        if str(sender_id) == str(recipient_id):
            self._reject(RejectionReason.SELF_CONVERSATION, sender_id, f"dm:{sender_id}")
        key = direct_conversation_key(sender_id, recipient_id)
        return self.accept(key, sender_id, body, reply_to_id, attachments, client_id)

    @BaseService.measure_operation("accept")
    def accept(
        self,
        conversation_key: str,
        sender_id: str,
        body: str,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        client_id: Optional[str] = None,
    ) -> AcceptedMessage:
        text = self._validate_body(body, sender_id, conversation_key)

        with self._locks.hold(conversation_key), self.transaction():
            sender = self.user_repository.get_by_id(sender_id)
            if sender is None or not sender.is_active:
                self._reject(RejectionReason.NOT_A_MEMBER, sender_id, conversation_key)

            if client_id:
                existing = self.message_repository.find_by_client_id(sender_id, client_id)
                if existing is not None:
                    return self._replayed(existing, conversation_key, client_id)

            conversation = self._resolve_conversation(conversation_key, sender_id)
            if not self.conversation_repository.is_participant(conversation, sender_id):
                self._reject(RejectionReason.NOT_A_MEMBER, sender_id, conversation_key)
            if not conversation.is_direct and (conversation.is_locked or conversation.is_disabled):
                self._reject(RejectionReason.CHANNEL_LOCKED, sender_id, conversation_key)

            unmuted = self._apply_mute_gate(sender, conversation_key)

            if reply_to_id is not None:
                target = self.message_repository.get_in_conversation(reply_to_id, conversation_key)
                if target is None:
                    self._reject(RejectionReason.INVALID_REPLY, sender_id, conversation_key)

            locked = self.conversation_repository.lock_for_update(conversation_key)
            if locked is None:
                self._reject(RejectionReason.UNKNOWN_CONVERSATION, sender_id, conversation_key)
            now = self.mute_gate.now()
            message = self.message_repository.create_message(
                conversation_key=conversation_key,
                sender_id=sender_id,
                body=text,
                created_at=now,
                reply_to_id=reply_to_id,
                attachments=attachments,
                client_id=client_id,
            )
            self.conversation_repository.record_last_message(locked, int(message.id), now)
            participants = self.conversation_repository.participant_ids(locked)

        kind = ConversationKind.DIRECT if locked.is_direct else ConversationKind.CHANNEL
        prometheus_metrics.record_message_accepted(kind.value)
        logger.info(
            f"[ROUTER] Accepted message {message.id} in {conversation_key}",
            extra={"conversation_key": conversation_key, "sender_id": sender_id},
        )
        return AcceptedMessage(
            message=message,
            participant_ids=participants,
            event=build_message_received_event(message, client_id),
            unmuted_sender=unmuted,
        )

    def _replayed(self, message: Message, conversation_key: str, client_id: str) -> AcceptedMessage:
        """A resent client_id: hand back the stored row without a second insert."""
        if message.conversation_key != conversation_key:
            self._reject(RejectionReason.CLIENT_ID_REUSED, str(message.sender_id), conversation_key)
        logger.info(
            f"[ROUTER] Send {client_id} already accepted as message {message.id}",
            extra={"conversation_key": conversation_key, "message_id": message.id},
        )
        return AcceptedMessage(
            message=message,
            participant_ids=[],
            event=build_message_received_event(message, client_id),
            replayed=True,
        )

    def _validate_body(self, body: Optional[str], sender_id: str, conversation_key: str) -> str:
        text = (body or "").strip()
        if not text:
            self._reject(RejectionReason.EMPTY_BODY, sender_id, conversation_key)
        if len(text) > self.max_length:
            self._reject(
                RejectionReason.BODY_TOO_LONG,
                sender_id,
                conversation_key,
                details={"max_length": self.max_length, "length": len(text)},
            )
        return text

    def _resolve_conversation(self, conversation_key: str, sender_id: str) -> Conversation:
        try:
            kind, parts = parse_conversation_key(conversation_key)
        except ValueError:
            self._reject(RejectionReason.UNKNOWN_CONVERSATION, sender_id, conversation_key)

        conversation = self.conversation_repository.get_by_key(conversation_key)
        if conversation is not None:
            return conversation
        if kind is not ConversationKind.DIRECT:
            self._reject(RejectionReason.UNKNOWN_CONVERSATION, sender_id, conversation_key)

        if sender_id not in parts:
            self._reject(RejectionReason.NOT_A_MEMBER, sender_id, conversation_key)
        recipient_id = parts[1] if parts[0] == sender_id else parts[0]
        if self.user_repository.get_active(recipient_id) is None:
            self._reject(RejectionReason.UNKNOWN_RECIPIENT, sender_id, conversation_key)
        return self.conversation_repository.get_or_create_direct(sender_id, recipient_id)

    def _apply_mute_gate(self, sender: User, conversation_key: str) -> bool:
        """
        Enforce the mute window. Returns True when an elapsed mute was
        cleared on the way through.
        """
        decision = self.mute_gate.check(sender)
        if not decision.allowed:
            self._reject(
                RejectionReason.MUTED,
                str(sender.id),
                conversation_key,
                details={
                    "muted_until": decision.muted_until.isoformat()
                    if decision.muted_until
                    else None
                },
            )
        if self.mute_gate.is_expired(sender):
            self.user_repository.clear_mute(sender)
            logger.info(f"[ROUTER] Cleared elapsed mute for {sender.id}")
            return True
        return False

    def _reject(
        self,
        reason: RejectionReason,
        sender_id: str,
        conversation_key: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> NoReturn:
        prometheus_metrics.record_message_rejected(reason.value)
        logger.info(
            f"[ROUTER] Rejected send: {reason.value}",
            extra={"conversation_key": conversation_key, "sender_id": sender_id},
        )
        raise MessageRejected(reason, details=details)

    # History

    @BaseService.measure_operation("history")
    def history(
        self,
        conversation_key: str,
        user_id: str,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        after: Optional[int] = None,
    ) -> List[Message]:
        """
        One ascending page of a conversation the user participates in.

        Without a cursor the most recent ``limit`` messages are returned.
        """
        page_size = max(1, min(limit or settings.history_default_limit, settings.history_max_limit))
        try:
            kind, parts = parse_conversation_key(conversation_key)
        except ValueError:
            raise NotFoundException("Conversation not found", code="unknown_conversation")

        conversation = self.conversation_repository.get_by_key(conversation_key)
        if conversation is None:
            # A direct pair nobody has written to yet is simply empty.
            if kind is ConversationKind.DIRECT and user_id in parts:
                return []
            raise NotFoundException("Conversation not found", code="unknown_conversation")
        if not self.conversation_repository.is_participant(conversation, user_id):
            raise ForbiddenException(
                "You are not a participant in this conversation", code="not_a_member"
            )
        return self.message_repository.find_by_conversation(
            conversation_key, limit=page_size, before_id=before, after_id=after
        )
