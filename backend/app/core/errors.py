"""
Typed failures raised by the signaling core.

Every error carries a stable ``code`` that clients switch on, plus optional
context (room_id, message_id, target_user_id) echoed back in the error
event.  These are reported only to the originating connection.
"""

from typing import Any


class SignalingError(Exception):
    code = "SIGNALING_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_event(self, event_type: str | None = None) -> dict:
        payload: dict[str, Any] = {"type": "error", "code": self.code, "error": self.message}
        if event_type:
            payload["event"] = event_type
        payload.update(self.context)
        return payload


class Unauthorized(SignalingError):
    code = "UNAUTHORIZED"


class RoomNotFound(SignalingError):
    code = "ROOM_NOT_FOUND"


class InvalidState(SignalingError):
    code = "INVALID_STATE"


class TargetUnreachable(SignalingError):
    code = "TARGET_UNREACHABLE"


class DuplicateRoom(SignalingError):
    code = "DUPLICATE_ROOM"


class StorageFailure(SignalingError):
    code = "STORAGE_FAILURE"


class MessageNotFound(SignalingError):
    code = "MESSAGE_NOT_FOUND"
