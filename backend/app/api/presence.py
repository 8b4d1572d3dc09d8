"""
Presence REST endpoints.

GET  /api/users/{user_id}/presence  — one user's status and local connection count
GET  /api/presence/bulk             — many users' statuses (query param: ids=1,2,3)

A user with a live connection in this process is "online"; anyone else is
looked up in the Redis mirror so users connected to another worker show up.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_hub
from app.database import get_db
from app.models.user import User
from app.redis import presence as presence_mirror
from app.websocket.hub import SignalingHub

router = APIRouter(prefix="/users", tags=["presence"])


class PresenceResponse(BaseModel):
    user_id: int
    status: str
    connections: int


@router.get("/{user_id}/presence", response_model=PresenceResponse)
async def get_user_presence(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    hub: SignalingHub = Depends(get_hub),
):
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    connections = hub.presence.connection_count(user_id)
    s = presence_mirror.ONLINE if connections else await presence_mirror.get_status(user_id)
    return PresenceResponse(user_id=user_id, status=s, connections=connections)


# Bulk endpoint lives under a separate prefix; we mount it on main.py directly.
bulk_router = APIRouter(prefix="/presence", tags=["presence"])


class BulkPresenceResponse(BaseModel):
    statuses: dict[int, str]


@bulk_router.get("/bulk", response_model=BulkPresenceResponse)
async def get_bulk_presence(
    ids: str = Query(..., description="Comma-separated user IDs, e.g. 1,2,3"),
    current_user: User = Depends(get_current_user),
    hub: SignalingHub = Depends(get_hub),
):
    try:
        user_ids: list[int] = [int(i.strip()) for i in ids.split(",") if i.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="ids must be comma-separated integers") from None
    if len(user_ids) > 200:
        raise HTTPException(status_code=400, detail="Too many ids (max 200)")

    remote = [uid for uid in user_ids if not hub.presence.is_online(uid)]
    statuses = await presence_mirror.get_bulk_status(remote)
    for uid in user_ids:
        if hub.presence.is_online(uid):
            statuses[uid] = presence_mirror.ONLINE
    return BulkPresenceResponse(statuses=statuses)
