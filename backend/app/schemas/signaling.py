"""Payload schemas for inbound WebSocket events.

Clients send camelCase keys (``targetUserId``); snake_case is accepted too.
Unknown keys are ignored.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.websocket.rooms import CallKind


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterConnection(_Event):
    token: str = Field(..., min_length=1)
    user_id: int | None = Field(None, alias="userId")
    display_name: str | None = Field(None, alias="displayName", max_length=50)


class InitiateCall(_Event):
    target_user_id: int = Field(..., alias="targetUserId")
    kind: CallKind = CallKind.AUDIO
    room_id: str | None = Field(None, alias="roomId", min_length=1, max_length=100)


class RoomEvent(_Event):
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=100)


class EndCall(_Event):
    room_id: str | None = Field(None, alias="roomId", max_length=100)
    target_user_id: int | None = Field(None, alias="targetUserId")

    @model_validator(mode="after")
    def require_room_or_target(self) -> "EndCall":
        if not self.room_id and self.target_user_id is None:
            raise ValueError("end-call needs roomId or targetUserId")
        return self


class Signal(_Event):
    target_user_id: int = Field(..., alias="targetUserId")
    payload: Any = None

    @model_validator(mode="after")
    def require_payload(self) -> "Signal":
        if self.payload is None:
            raise ValueError("signal needs a payload")
        return self


class MarkDelivered(_Event):
    message_id: int = Field(..., alias="messageId")


class MarkRead(_Event):
    message_id: int | None = Field(None, alias="messageId")
    with_user_id: int | None = Field(None, alias="withUserId")

    @model_validator(mode="after")
    def exactly_one_target(self) -> "MarkRead":
        if (self.message_id is None) == (self.with_user_id is None):
            raise ValueError("mark-read needs exactly one of messageId or withUserId")
        return self


class Typing(_Event):
    target_user_id: int = Field(..., alias="targetUserId")
    is_typing: bool = Field(True, alias="isTyping")
