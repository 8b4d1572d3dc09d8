from datetime import datetime

from pydantic import BaseModel


class MessageStatusResponse(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    status: str
    changed: bool
    delivered_at: datetime | None = None
    read_at: datetime | None = None


class BulkReadResponse(BaseModel):
    updated: int
    message_ids: list[int]
