# backend/qachat/repositories/factory.py
"""
Repository Factory for the messaging core.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .audit_log_repository import AuditLogRepository
    from .conversation_repository import ConversationRepository
    from .message_repository import MessageRepository
    from .read_cursor_repository import ReadCursorRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_conversation_repository(db: Session) -> "ConversationRepository":
        """Create repository for direct pairs, channels and membership."""
        from .conversation_repository import ConversationRepository

        return ConversationRepository(db)

    @staticmethod
    def create_message_repository(db: Session) -> "MessageRepository":
        """Create repository for messages and reactions."""
        from .message_repository import MessageRepository

        return MessageRepository(db)

    @staticmethod
    def create_read_cursor_repository(db: Session) -> "ReadCursorRepository":
        from .read_cursor_repository import ReadCursorRepository

        return ReadCursorRepository(db)

    @staticmethod
    def create_audit_log_repository(db: Session) -> "AuditLogRepository":
        """Create repository for the moderation audit trail."""
        from .audit_log_repository import AuditLogRepository

        return AuditLogRepository(db)
