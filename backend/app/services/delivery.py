"""
Message delivery protocol — sent → delivered → read.

Status only moves forward and only the receiver's activity moves it.  The
durable write always comes first; the sender's live connections are notified
only after the store acknowledged the transition, and only by the call that
actually performed it, so duplicate or concurrent marks stay silent.
"""

import logging
from datetime import datetime
from typing import Protocol

from app.core import events
from app.core.errors import MessageNotFound, Unauthorized
from app.models.message import Message, MessageStatus
from app.websocket.rooms import utcnow
from app.websocket.transport import TransportRelay

logger = logging.getLogger(__name__)


class MessageStore(Protocol):
    async def get_message(self, message_id: int) -> Message | None: ...

    async def set_status(self, message_id: int, status: MessageStatus, timestamp: datetime) -> bool: ...

    async def set_status_many(
        self, message_ids: list[int], status: MessageStatus, timestamp: datetime
    ) -> list[int]: ...

    async def find_unread(self, from_user_id: int, to_user_id: int) -> list[Message]: ...


class MessageDeliveryProtocol:
    def __init__(self, store: MessageStore, relay: TransportRelay) -> None:
        self._store = store
        self._relay = relay

    async def mark_delivered(self, message_id: int, by_user_id: int) -> bool:
        """Advance a ``sent`` message to ``delivered``.

        Returns True if this call performed the transition.
        """
        message = await self._load_for_receiver(message_id, by_user_id)
        if MessageStatus(message.status) is not MessageStatus.SENT:
            return False

        now = utcnow()
        if not await self._store.set_status(message_id, MessageStatus.DELIVERED, now):
            return False

        await self._relay.publish_to_user(
            message.sender_id,
            {
                "type": events.MESSAGE_DELIVERED,
                "messageId": message_id,
                "status": MessageStatus.DELIVERED.value,
                "deliveredAt": now.isoformat(),
            },
        )
        return True

    async def mark_read(self, message_id: int, by_user_id: int) -> bool:
        message = await self._load_for_receiver(message_id, by_user_id)
        if MessageStatus(message.status) is MessageStatus.READ:
            return False

        now = utcnow()
        if not await self._store.set_status(message_id, MessageStatus.READ, now):
            return False

        await self._relay.publish_to_user(
            message.sender_id,
            {
                "type": events.MESSAGE_READ,
                "messageId": message_id,
                "status": MessageStatus.READ.value,
                "readAt": now.isoformat(),
            },
        )
        return True

    async def mark_all_read(self, with_user_id: int, for_user_id: int) -> list[int]:
        """Mark everything ``with_user_id`` sent to ``for_user_id`` as read.

        The sender gets one aggregated ``messages-read`` event listing the ids
        this call changed.  The write is all-or-nothing: after a storage
        failure no message has moved, and a retry announces all of them.
        """
        unread = await self._store.find_unread(with_user_id, for_user_id)
        if not unread:
            return []
        now = utcnow()
        changed = await self._store.set_status_many([m.id for m in unread], MessageStatus.READ, now)

        if changed:
            await self._relay.publish_to_user(
                with_user_id,
                {
                    "type": events.MESSAGES_READ,
                    "readBy": for_user_id,
                    "messageIds": changed,
                    "readAt": now.isoformat(),
                },
            )
            logger.info("User %s read %d message(s) from %s", for_user_id, len(changed), with_user_id)
        return changed

    async def _load_for_receiver(self, message_id: int, by_user_id: int) -> Message:
        message = await self._store.get_message(message_id)
        if message is None:
            raise MessageNotFound("Message not found", message_id=message_id)
        if message.receiver_id != by_user_id:
            raise Unauthorized("Only the receiver can update message status", message_id=message_id)
        return message
