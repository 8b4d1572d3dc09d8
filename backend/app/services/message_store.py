"""
SQL-backed collaborators of the delivery protocol and the call engine.

``SqlMessageStore`` is the durable side of message status: every write is a
conditional compare-and-advance so two concurrent marks on the same message
cannot both win.  ``SqlUserDirectory`` answers "does this identity exist".
"""

import logging
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StorageFailure
from app.models.message import Message, MessageStatus
from app.models.user import User

logger = logging.getLogger(__name__)

_STAMP_COLUMN = {
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.READ: "read_at",
}


class SqlMessageStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    async def get_message(self, message_id: int) -> Message | None:
        try:
            return self._db.query(Message).filter(Message.id == message_id).first()
        except SQLAlchemyError as exc:
            logger.warning("message_store.get_message failed: %s", exc)
            raise StorageFailure("Could not load message", message_id=message_id) from exc

    async def set_status(self, message_id: int, status: MessageStatus, timestamp: datetime) -> bool:
        """Advance ``message_id`` to ``status`` if it is currently lower.

        Returns True when this call performed the transition, False when the
        message was already at or past ``status``.
        """
        try:
            advanced = self._advance(message_id, status, timestamp)
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.warning("message_store.set_status(%s, %s) failed: %s", message_id, status.value, exc)
            raise StorageFailure("Could not persist message status", message_id=message_id) from exc
        return advanced

    async def set_status_many(self, message_ids: list[int], status: MessageStatus, timestamp: datetime) -> list[int]:
        """Advance several messages in one transaction.

        Returns the ids this call moved.  On failure nothing is written, so a
        retry sees every message as still eligible.
        """
        try:
            advanced = [mid for mid in message_ids if self._advance(mid, status, timestamp)]
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.warning("message_store.set_status_many(%d ids, %s) failed: %s", len(message_ids), status.value, exc)
            raise StorageFailure("Could not persist message status") from exc
        return advanced

    def _advance(self, message_id: int, status: MessageStatus, timestamp: datetime) -> bool:
        """Conditional UPDATE inside the current transaction; caller commits."""
        values = {"status": status.value, _STAMP_COLUMN[status]: timestamp}
        result = self._db.execute(
            update(Message)
            .where(Message.id == message_id, Message.status.in_([s.value for s in status.lower()]))
            .values(**values)
        )
        if status is MessageStatus.READ:
            # a message read straight from "sent" was necessarily delivered too
            self._db.execute(
                update(Message)
                .where(Message.id == message_id, Message.delivered_at.is_(None))
                .values(delivered_at=timestamp)
            )
        return result.rowcount > 0

    async def find_unread(self, from_user_id: int, to_user_id: int) -> list[Message]:
        try:
            return (
                self._db.query(Message)
                .filter(
                    Message.sender_id == from_user_id,
                    Message.receiver_id == to_user_id,
                    or_(Message.status == MessageStatus.SENT.value, Message.status == MessageStatus.DELIVERED.value),
                )
                .order_by(Message.created_at.asc(), Message.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            logger.warning("message_store.find_unread failed: %s", exc)
            raise StorageFailure("Could not load unread messages") from exc


class SqlUserDirectory:
    def __init__(self, db: Session) -> None:
        self._db = db

    async def exists(self, user_id: int) -> bool:
        return (
            self._db.query(User.id).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
            is not None
        )
