from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.api.deps import get_hub
from app.database import get_db
from app.websocket.hub import SignalingHub

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db), hub: SignalingHub = Depends(get_hub)) -> dict:
    realtime = {
        "connections": hub.presence.total_connections(),
        "online_users": len(hub.presence.online_users()),
        "active_calls": len(hub.rooms),
    }
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected", **realtime}
    except Exception as exc:
        return {"status": "unhealthy", "database": "disconnected", "error": str(exc), **realtime}
