# backend/qachat/services/directory_service.py
"""
Directory reads for the client: contacts, channel rosters and the
conversation list with unread counts.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, NotFoundException
from ..models.conversation import Conversation, channel_conversation_key
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService


@dataclass
class DirectoryEntry:
    user: User
    online: bool


@dataclass
class ConversationSummary:
    conversation: Conversation
    unread_count: int
    last_read_message_id: int
    other_user_id: Optional[str] = None


class DirectoryService(BaseService):
    def __init__(self, db: Session, is_online: Callable[[str], bool] = lambda _uid: False):
        super().__init__(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.conversation_repository = RepositoryFactory.create_conversation_repository(db)
        self.message_repository = RepositoryFactory.create_message_repository(db)
        self.cursor_repository = RepositoryFactory.create_read_cursor_repository(db)
        self._is_online = is_online

    @BaseService.measure_operation("list_contacts")
    def list_contacts(self, user_id: str) -> List[DirectoryEntry]:
        """Eligible direct-message recipients: active users other than the caller."""
        return [
            DirectoryEntry(user=user, online=self._is_online(str(user.id)))
            for user in self.user_repository.list_contacts(user_id)
        ]

    def contact_ids(self, user_id: str) -> List[str]:
        return [str(user.id) for user in self.user_repository.list_contacts(user_id)]

    @BaseService.measure_operation("list_channel_members")
    def list_channel_members(self, channel_id: str, user: User) -> List[DirectoryEntry]:
        """Channel roster with mute state and online flag; members and admins only."""
        key = channel_conversation_key(channel_id)
        conversation = self.conversation_repository.get_by_key(key)
        if conversation is None:
            raise NotFoundException("Channel not found")
        if not user.is_admin and not self.conversation_repository.is_channel_member(
            key, str(user.id)
        ):
            raise ForbiddenException("You are not a member of this channel")
        members = self.user_repository.get_many(self.conversation_repository.get_member_ids(key))
        return [DirectoryEntry(user=m, online=self._is_online(str(m.id))) for m in members]

    @BaseService.measure_operation("list_conversations")
    def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        cursors = self.cursor_repository.positions_for_user(user_id)
        summaries: List[ConversationSummary] = []
        for conversation in self.conversation_repository.list_for_user(user_id):
            key = str(conversation.key)
            cursor = cursors.get(key, 0)
            summaries.append(
                ConversationSummary(
                    conversation=conversation,
                    unread_count=self.message_repository.count_unread(key, user_id, cursor),
                    last_read_message_id=cursor,
                    other_user_id=conversation.get_other_user_id(user_id),
                )
            )
        return summaries
