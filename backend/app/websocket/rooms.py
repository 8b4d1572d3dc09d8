"""
Room directory — storage for in-flight call rooms.

The directory only stores; it does not know the call state machine.  The
CallSignalingEngine validates every transition before writing here, and a
room is removed as soon as it reaches a terminal status.  Call history is
kept elsewhere.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.core.errors import DuplicateRoom, RoomNotFound

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallKind(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"


class CallStatus(str, enum.Enum):
    INITIATED = "initiated"
    RINGING = "ringing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.REJECTED, CallStatus.ENDED)

    @property
    def is_pending(self) -> bool:
        return self in (CallStatus.INITIATED, CallStatus.RINGING)


@dataclass(slots=True)
class CallRoom:
    room_id: str
    caller_id: int
    callee_id: int
    kind: CallKind
    caller_name: str | None = None
    status: CallStatus = CallStatus.INITIATED
    created_at: datetime = field(default_factory=utcnow)
    accepted_at: datetime | None = None
    accepted_by: int | None = None
    ended_at: datetime | None = None

    @property
    def participants(self) -> list[int]:
        return [self.caller_id, self.callee_id]

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.caller_id, self.callee_id)

    def other_participant(self, user_id: int) -> int:
        return self.callee_id if user_id == self.caller_id else self.caller_id

    def duration(self, now: datetime | None = None) -> int | None:
        """Whole seconds since the call was accepted, None before that."""
        if self.accepted_at is None:
            return None
        end = self.ended_at or now or utcnow()
        return int((end - self.accepted_at).total_seconds())

    def snapshot(self) -> dict:
        return {
            "roomId": self.room_id,
            "participants": self.participants,
            "status": self.status.value,
            "kind": self.kind.value,
            "duration": self.duration(),
            "createdAt": self.created_at.isoformat(),
        }


class RoomDirectory:
    def __init__(self) -> None:
        self._rooms: dict[str, CallRoom] = {}

    def create(
        self,
        room_id: str,
        caller_id: int,
        callee_id: int,
        kind: CallKind,
        caller_name: str | None = None,
    ) -> CallRoom:
        if room_id in self._rooms:
            raise DuplicateRoom("A call room with this id already exists", room_id=room_id)
        room = CallRoom(room_id=room_id, caller_id=caller_id, callee_id=callee_id, kind=kind, caller_name=caller_name)
        self._rooms[room_id] = room
        return room

    def get(self, room_id: str) -> CallRoom | None:
        return self._rooms.get(room_id)

    def update_status(self, room_id: str, status: CallStatus, timestamp: datetime | None = None) -> CallRoom:
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound("Call room not found or expired", room_id=room_id)
        timestamp = timestamp or utcnow()
        room.status = status
        if status is CallStatus.ACCEPTED:
            room.accepted_at = timestamp
        elif status.is_terminal:
            room.ended_at = timestamp
        return room

    def remove(self, room_id: str) -> CallRoom | None:
        return self._rooms.pop(room_id, None)

    def find_by_participant(self, user_id: int) -> list[CallRoom]:
        return [room for room in self._rooms.values() if room.is_participant(user_id)]

    def all(self) -> list[CallRoom]:
        return list(self._rooms.values())

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms
