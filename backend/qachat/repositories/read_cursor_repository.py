# backend/qachat/repositories/read_cursor_repository.py
"""Read cursor storage: one monotonic watermark per (user, conversation)."""

from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.timezone_utils import utc_now
from ..models.read_cursor import ReadCursor
from .base_repository import BaseRepository


class ReadCursorRepository(BaseRepository[ReadCursor]):
    def __init__(self, db: Session):
        super().__init__(db, ReadCursor)

    def get_position(self, user_id: str, conversation_key: str) -> int:
        row = self.find_one_by(user_id=user_id, conversation_key=conversation_key)
        return int(row.last_read_message_id) if row else 0

    def positions_for_user(self, user_id: str) -> Dict[str, int]:
        rows = self.db.query(ReadCursor).filter(ReadCursor.user_id == user_id).all()
        return {str(r.conversation_key): int(r.last_read_message_id) for r in rows}

    def advance(self, user_id: str, conversation_key: str, up_to: int) -> Tuple[int, int]:
        """
        Move the cursor forward to ``up_to`` if that is ahead of it.

        The conditional UPDATE makes concurrent calls converge on the
        maximum. Returns ``(previous, current)``.
        """
        previous = self._ensure_row(user_id, conversation_key)
        updated = (
            self.db.query(ReadCursor)
            .filter(
                ReadCursor.user_id == user_id,
                ReadCursor.conversation_key == conversation_key,
                ReadCursor.last_read_message_id < up_to,
            )
            .update(
                {"last_read_message_id": up_to, "updated_at": utc_now()},
                synchronize_session=False,
            )
        )
        if updated:
            return previous, up_to
        return previous, self._read_fresh(user_id, conversation_key)

    def _ensure_row(self, user_id: str, conversation_key: str) -> int:
        existing = self._read(user_id, conversation_key)
        if existing is not None:
            return existing
        try:
            with self.db.begin_nested():
                self.db.add(
                    ReadCursor(
                        user_id=user_id,
                        conversation_key=conversation_key,
                        last_read_message_id=0,
                    )
                )
        except IntegrityError:
            self.logger.debug("Read cursor for %s/%s created concurrently", user_id, conversation_key)
            return self._read_fresh(user_id, conversation_key)
        return 0

    def _read(self, user_id: str, conversation_key: str) -> Optional[int]:
        value = (
            self.db.query(ReadCursor.last_read_message_id)
            .filter(
                ReadCursor.user_id == user_id,
                ReadCursor.conversation_key == conversation_key,
            )
            .scalar()
        )
        return None if value is None else int(value)

    def _read_fresh(self, user_id: str, conversation_key: str) -> int:
        self.db.expire_all()
        return self._read(user_id, conversation_key) or 0
