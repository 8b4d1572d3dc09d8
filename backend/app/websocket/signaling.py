"""
Call signaling engine — the call-room state machine and the WebRTC relay.

States::

    initiated ──► ringing ──► accepted ──► ended
        │            │
        └────────────┴──► rejected / ended

``rejected`` and ``ended`` are terminal: the room leaves the directory at
that moment, so a late or duplicate event for it reports ROOM_NOT_FOUND.

Every state check and the write that follows it happen without an ``await``
in between.  On the single event loop that makes check-and-set atomic: when
an accept and an end race on one room, whichever is dispatched first wins and
the other sees the new status.  Notifications go out only after the state
change has been applied.

Media never passes through here; only the opaque offer/answer/candidate blobs
that let the two peers negotiate a direct path.
"""

import json
import logging
import uuid
from typing import Any, Protocol

from app.config import settings
from app.core import events
from app.core.errors import InvalidState, RoomNotFound, TargetUnreachable, Unauthorized
from app.websocket.connection import Connection
from app.websocket.presence import PresenceRegistry
from app.websocket.rooms import CallKind, CallRoom, CallStatus, RoomDirectory, utcnow
from app.websocket.transport import TransportRelay

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    async def exists(self, user_id: int) -> bool: ...


def _require_registered(connection: Connection) -> int:
    if connection.user_id is None:
        raise Unauthorized("Not authenticated")
    return connection.user_id


class CallSignalingEngine:
    def __init__(
        self,
        presence: PresenceRegistry,
        rooms: RoomDirectory,
        relay: TransportRelay,
        max_signal_bytes: int = settings.MAX_SIGNAL_PAYLOAD_BYTES,
    ) -> None:
        self._presence = presence
        self._rooms = rooms
        self._relay = relay
        self._max_signal_bytes = max_signal_bytes

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def initiate(
        self,
        connection: Connection,
        target_user_id: int,
        kind: CallKind = CallKind.AUDIO,
        room_id: str | None = None,
        users: UserDirectory | None = None,
    ) -> CallRoom:
        caller_id = _require_registered(connection)
        if target_user_id == caller_id:
            raise InvalidState("Cannot call yourself", target_user_id=target_user_id)
        if users is not None and not await users.exists(target_user_id):
            raise TargetUnreachable("User not found", target_user_id=target_user_id)
        if not self._presence.is_online(target_user_id):
            raise TargetUnreachable("User is not online", target_user_id=target_user_id)

        room = self._rooms.create(
            room_id or f"call_{uuid.uuid4().hex}",
            caller_id,
            target_user_id,
            kind,
            caller_name=connection.display_name,
        )
        logger.info("Call %s created: %s -> %s (%s)", room.room_id, caller_id, target_user_id, kind.value)

        await self._relay.send(
            connection,
            {
                "type": events.CALL_INITIATED,
                "roomId": room.room_id,
                "targetUserId": target_user_id,
                "kind": kind.value,
                "timestamp": room.created_at.isoformat(),
            },
        )
        rang = await self._relay.publish_to_user(
            target_user_id,
            {
                "type": events.INCOMING_CALL,
                "roomId": room.room_id,
                "kind": kind.value,
                "from": caller_id,
                "caller": {"id": caller_id, "name": connection.display_name},
                "timestamp": room.created_at.isoformat(),
            },
        )
        # the callee may already have answered (or the caller hung up) while we were sending
        if rang and self._rooms.get(room.room_id) is room and room.status is CallStatus.INITIATED:
            self._rooms.update_status(room.room_id, CallStatus.RINGING)
        return room

    async def accept(self, connection: Connection, room_id: str) -> CallRoom:
        user_id = _require_registered(connection)
        room = self._get_room(room_id)
        if room.callee_id != user_id:
            logger.warning("Call %s: accept from %s, expected callee %s", room_id, user_id, room.callee_id)
            raise Unauthorized("Not authorized to accept this call", room_id=room_id)
        if not room.status.is_pending:
            raise InvalidState(f"Call is already {room.status.value}", room_id=room_id)

        now = utcnow()
        self._rooms.update_status(room_id, CallStatus.ACCEPTED, now)
        room.accepted_by = user_id

        for caller_connection in self._presence.channels_for(room.caller_id):
            self._relay.join(room_id, caller_connection)
        self._relay.join(room_id, connection)
        logger.info("Call %s accepted by %s on %r", room_id, user_id, connection)

        await self._relay.publish_to_user(
            room.caller_id,
            {
                "type": events.CALL_ACCEPTED,
                "roomId": room_id,
                "acceptedBy": user_id,
                "acceptorName": connection.display_name,
                "timestamp": now.isoformat(),
            },
        )
        await self._relay.publish_to_room(
            room_id,
            {
                "type": events.ROOM_READY,
                "roomId": room_id,
                "participants": room.participants,
                "status": CallStatus.ACCEPTED.value,
                "timestamp": now.isoformat(),
            },
        )
        return room

    async def reject(self, connection: Connection, room_id: str) -> CallRoom:
        user_id = _require_registered(connection)
        room = self._get_room(room_id)
        if not room.is_participant(user_id):
            raise Unauthorized("Not a participant of this call", room_id=room_id)
        if not room.status.is_pending:
            raise InvalidState(f"Call is already {room.status.value}", room_id=room_id)

        now = utcnow()
        self._close(room, CallStatus.REJECTED, now)
        logger.info("Call %s rejected by %s", room_id, user_id)

        await self._relay.publish_to_user(
            room.other_participant(user_id),
            {
                "type": events.CALL_REJECTED,
                "roomId": room_id,
                "rejectedBy": user_id,
                "timestamp": now.isoformat(),
            },
        )
        return room

    async def end(
        self,
        connection: Connection,
        room_id: str | None = None,
        target_user_id: int | None = None,
    ) -> CallRoom:
        user_id = _require_registered(connection)
        if room_id:
            room = self._get_room(room_id)
        elif target_user_id is not None:
            room = self._find_between(user_id, target_user_id)
        else:
            raise InvalidState("end-call needs a roomId or a targetUserId")

        if not room.is_participant(user_id):
            raise Unauthorized("Not a participant of this call", room_id=room.room_id)
        if room.status.is_terminal:
            raise InvalidState(f"Call is already {room.status.value}", room_id=room.room_id)

        now = utcnow()
        self._close(room, CallStatus.ENDED, now)
        logger.info("Call %s ended by %s after %ss", room.room_id, user_id, room.duration())

        await self._relay.publish_to_user(
            room.other_participant(user_id),
            self._ended_event(room, ended_by=user_id, reason=events.REASON_HANGUP),
        )
        return room

    async def disconnect(self, connection: Connection) -> list[CallRoom]:
        """Tear down a connection and, if it was the user's last, their calls.

        Every affected room is closed before any notification is sent, so the
        counterpart of each room hears about it exactly once.
        """
        went_offline = self._presence.unregister(connection)
        self._relay.leave_all(connection)
        user_id = connection.user_id
        if user_id is None or not went_offline:
            return []

        now = utcnow()
        torn_down = []
        for room in self._rooms.find_by_participant(user_id):
            if room.status.is_terminal:
                continue
            self._close(room, CallStatus.ENDED, now)
            torn_down.append(room)

        for room in torn_down:
            await self._relay.publish_to_user(
                room.other_participant(user_id),
                self._ended_event(room, ended_by=user_id, reason=events.REASON_DISCONNECT),
            )
        if torn_down:
            logger.info("Cleaned up %d call room(s) after user %s disconnected", len(torn_down), user_id)
        return torn_down

    # ------------------------------------------------------------------
    # Signal relay
    # ------------------------------------------------------------------

    async def relay_signal(self, connection: Connection, target_user_id: int, payload: Any) -> int:
        """Forward an opaque negotiation blob to every connection of the target.

        An unreachable target is answered with an ``unreachable`` event to the
        sender rather than being dropped.
        """
        sender_id = _require_registered(connection)
        if len(json.dumps(payload, default=str)) > self._max_signal_bytes:
            raise InvalidState("Signal payload too large", target_user_id=target_user_id)

        if not self._presence.is_online(target_user_id):
            logger.warning("Signal from %s to offline user %s", sender_id, target_user_id)
            await self._relay.send(
                connection,
                {"type": events.UNREACHABLE, "targetUserId": target_user_id, "error": "Target user is not online"},
            )
            return 0

        return await self._relay.publish_to_user(
            target_user_id,
            {"type": events.SIGNAL, "fromUserId": sender_id, "payload": payload},
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        rooms = self._rooms.all()
        return {"activeRooms": len(rooms), "rooms": [room.snapshot() for room in rooms]}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_room(self, room_id: str) -> CallRoom:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound("Call room not found or expired", room_id=room_id)
        return room

    def _find_between(self, user_id: int, other_id: int) -> CallRoom:
        for room in self._rooms.find_by_participant(user_id):
            if room.other_participant(user_id) == other_id and not room.status.is_terminal:
                return room
        raise RoomNotFound("No active call with this user", target_user_id=other_id)

    def _close(self, room: CallRoom, status: CallStatus, timestamp) -> None:
        self._rooms.update_status(room.room_id, status, timestamp)
        self._rooms.remove(room.room_id)
        self._relay.close_room(room.room_id)

    @staticmethod
    def _ended_event(room: CallRoom, ended_by: int, reason: str) -> dict:
        return {
            "type": events.CALL_ENDED,
            "roomId": room.room_id,
            "endedBy": ended_by,
            "reason": reason,
            "duration": room.duration(),
            "timestamp": room.ended_at.isoformat() if room.ended_at else utcnow().isoformat(),
        }
