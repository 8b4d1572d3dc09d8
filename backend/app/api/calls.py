"""
Call REST API — introspect the in-flight call rooms of this process.

GET /api/calls/active   → same snapshot as the ``get-call-stats`` event
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_current_user, get_hub
from app.models.user import User
from app.websocket.hub import SignalingHub

router = APIRouter(prefix="/calls", tags=["calls"])


class CallRoomSnapshot(BaseModel):
    roomId: str
    participants: list[int]
    status: str
    kind: str
    duration: int | None = None
    createdAt: str


class CallStatsResponse(BaseModel):
    activeRooms: int
    rooms: list[CallRoomSnapshot]


@router.get("/active", response_model=CallStatsResponse)
async def get_active_calls(
    current_user: User = Depends(get_current_user),
    hub: SignalingHub = Depends(get_hub),
) -> CallStatsResponse:
    return CallStatsResponse(**hub.calls.stats())
