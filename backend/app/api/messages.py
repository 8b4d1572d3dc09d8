"""
Message status endpoints — the REST entry points of the delivery protocol.

PUT /api/messages/{message_id}/delivered       — receiver's client got the message
PUT /api/messages/{message_id}/read            — receiver opened one message
PUT /api/messages/read?with_user_id=<id>       — receiver opened the whole conversation

Only the receiver may call these; the sender is notified over WebSocket.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_hub
from app.database import get_db
from app.models.message import Message
from app.models.user import User
from app.schemas.message import BulkReadResponse, MessageStatusResponse
from app.websocket.hub import SignalingHub

router = APIRouter(prefix="/messages", tags=["messages"])


def _status_response(db: Session, message_id: int, changed: bool) -> MessageStatusResponse:
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return MessageStatusResponse(
        id=message.id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        status=message.status,
        changed=changed,
        delivered_at=message.delivered_at,
        read_at=message.read_at,
    )


# Registered before /{message_id}/... so "read" is never parsed as an id.
@router.put("/read", response_model=BulkReadResponse)
async def mark_conversation_read(
    with_user_id: int = Query(..., description="The user whose messages were read"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: SignalingHub = Depends(get_hub),
) -> BulkReadResponse:
    changed = await hub.delivery(db).mark_all_read(with_user_id, current_user.id)
    return BulkReadResponse(updated=len(changed), message_ids=changed)


@router.put("/{message_id}/delivered", response_model=MessageStatusResponse)
async def mark_message_delivered(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: SignalingHub = Depends(get_hub),
) -> MessageStatusResponse:
    changed = await hub.delivery(db).mark_delivered(message_id, current_user.id)
    return _status_response(db, message_id, changed)


@router.put("/{message_id}/read", response_model=MessageStatusResponse)
async def mark_message_read(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: SignalingHub = Depends(get_hub),
) -> MessageStatusResponse:
    changed = await hub.delivery(db).mark_read(message_id, current_user.id)
    return _status_response(db, message_id, changed)
