"""
parley — real-time signaling and presence backend.

One WebSocket endpoint carries call signaling, WebRTC negotiation relay and
message delivery-state pushes; a small REST surface exposes the message
status entry points and presence/call introspection.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api import calls, health, messages
from app.api.presence import bulk_router
from app.api.presence import router as presence_router
from app.config import settings
from app.core.errors import (
    DuplicateRoom,
    InvalidState,
    MessageNotFound,
    RoomNotFound,
    SignalingError,
    StorageFailure,
    TargetUnreachable,
    Unauthorized,
)
from app.database import get_db
from app.redis.client import close_redis, init_redis
from app.websocket.handlers import signaling_ws_handler
from app.websocket.hub import SignalingHub

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.hub = SignalingHub()
    await init_redis()
    yield
    await close_redis()


app = FastAPI(
    title="parley",
    description="Call signaling, presence and message delivery state",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
# allow_origins=["*"] is incompatible with allow_credentials=True. When the
# wildcard is present (dev), switch to allow_origin_regex=".*" instead.
_cors_origins = [o for o in settings.CORS_ORIGINS if o != "*"]
_cors_regex = ".*" if len(_cors_origins) < len(settings.CORS_ORIGINS) else None

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_origin_regex=_cors_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(messages.router, prefix="/api")
app.include_router(calls.router, prefix="/api")
app.include_router(presence_router, prefix="/api")
app.include_router(bulk_router, prefix="/api")

# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, db: Session = Depends(get_db)) -> None:
    await signaling_ws_handler(websocket, db)


# ---------------------------------------------------------------------------
# Custom exception handlers
# ---------------------------------------------------------------------------

_HTTP_STATUS = {
    Unauthorized: 403,
    RoomNotFound: 404,
    MessageNotFound: 404,
    TargetUnreachable: 404,
    InvalidState: 409,
    DuplicateRoom: 409,
    StorageFailure: 503,
}


@app.exception_handler(SignalingError)
async def signaling_error_handler(request: Request, exc: SignalingError) -> JSONResponse:
    status_code = _HTTP_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code, **exc.context})
