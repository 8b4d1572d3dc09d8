import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core import events
from app.core.errors import SignalingError, Unauthorized
from app.models.user import User
from app.redis import presence as presence_mirror
from app.schemas.signaling import (
    EndCall,
    InitiateCall,
    MarkDelivered,
    MarkRead,
    RegisterConnection,
    RoomEvent,
    Signal,
    Typing,
)
from app.services.auth_service import get_user_from_token
from app.websocket.connection import Connection
from app.websocket.hub import SignalingHub

logger = logging.getLogger(__name__)


def _error(code: str, message: str, event_type: str | None = None) -> dict:
    payload = {"type": events.ERROR, "code": code, "error": message}
    if event_type:
        payload["event"] = event_type
    return payload


async def _register(hub: SignalingHub, connection: Connection, user: User, display_name: str | None) -> None:
    came_online = hub.presence.register(user.id, connection, display_name or user.name)
    if came_online:
        await presence_mirror.set_online(user.id)
    await hub.relay.send(
        connection,
        {
            "type": events.CONNECTION_REGISTERED,
            "connectionId": connection.connection_id,
            "userId": user.id,
            "displayName": connection.display_name,
        },
    )


async def dispatch(hub: SignalingHub, connection: Connection, data: dict[str, Any], db: Session) -> None:
    """Route one inbound event.  Raises SignalingError / ValidationError."""
    event_type = data.get("type")

    if event_type == events.REGISTER_CONNECTION:
        body = RegisterConnection.model_validate(data)
        user = get_user_from_token(body.token, db)
        if user is None or (body.user_id is not None and body.user_id != user.id):
            raise Unauthorized("Invalid credentials")
        if connection.is_registered and connection.user_id != user.id:
            raise Unauthorized("Connection is already registered to another user")
        await _register(hub, connection, user, body.display_name)
        return

    if not connection.is_registered:
        raise Unauthorized("Connection is not registered")

    if event_type == events.HEARTBEAT:
        await presence_mirror.heartbeat(connection.user_id)

    # ------------------------------------------------------------------
    # Call signaling
    # ------------------------------------------------------------------
    elif event_type == events.INITIATE_CALL:
        body = InitiateCall.model_validate(data)
        await hub.calls.initiate(
            connection,
            body.target_user_id,
            body.kind,
            room_id=body.room_id,
            users=hub.users(db),
        )

    elif event_type == events.ACCEPT_CALL:
        body = RoomEvent.model_validate(data)
        await hub.calls.accept(connection, body.room_id)

    elif event_type == events.REJECT_CALL:
        body = RoomEvent.model_validate(data)
        await hub.calls.reject(connection, body.room_id)

    elif event_type == events.END_CALL:
        body = EndCall.model_validate(data)
        await hub.calls.end(connection, room_id=body.room_id, target_user_id=body.target_user_id)

    elif event_type == events.SIGNAL:
        body = Signal.model_validate(data)
        await hub.calls.relay_signal(connection, body.target_user_id, body.payload)

    elif event_type == events.GET_CALL_STATS:
        await hub.relay.send(connection, {"type": events.CALL_STATS, **hub.calls.stats()})

    # ------------------------------------------------------------------
    # Message delivery state
    # ------------------------------------------------------------------
    elif event_type == events.MARK_DELIVERED:
        body = MarkDelivered.model_validate(data)
        await hub.delivery(db).mark_delivered(body.message_id, connection.user_id)

    elif event_type == events.MARK_READ:
        body = MarkRead.model_validate(data)
        protocol = hub.delivery(db)
        if body.message_id is not None:
            await protocol.mark_read(body.message_id, connection.user_id)
        else:
            await protocol.mark_all_read(body.with_user_id, connection.user_id)

    # ------------------------------------------------------------------
    # Typing indicators (fire-and-forget, offline targets are dropped)
    # ------------------------------------------------------------------
    elif event_type in (events.TYPING, events.STOP_TYPING):
        body = Typing.model_validate(data)
        await hub.relay.publish_to_user(
            body.target_user_id,
            {
                "type": events.USER_TYPING,
                "fromUserId": connection.user_id,
                "displayName": connection.display_name,
                "isTyping": body.is_typing and event_type == events.TYPING,
            },
            exclude=connection,
        )

    else:
        await hub.relay.send(connection, _error("UNKNOWN_EVENT", f"Unknown event type {event_type!r}", event_type))


async def _handle_frame(hub: SignalingHub, connection: Connection, raw: str, db: Session) -> None:
    """Dispatch one frame, converting every failure into an error event for this connection only."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        await hub.relay.send(connection, _error("INVALID_PAYLOAD", "Frame is not valid JSON"))
        return
    if not isinstance(data, dict):
        await hub.relay.send(connection, _error("INVALID_PAYLOAD", "Frame must be a JSON object"))
        return

    event_type = data.get("type")
    try:
        await dispatch(hub, connection, data, db)
    except SignalingError as exc:
        logger.warning("%s rejected for %r: %s %s", event_type, connection, exc.code, exc.message)
        await hub.relay.send(connection, exc.to_event(event_type))
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(map(str, e['loc'])) or 'body'}: {e['msg']}" for e in exc.errors())
        await hub.relay.send(connection, _error("INVALID_PAYLOAD", errors, event_type))
    except Exception as exc:
        logger.error("Error handling event %r from %r: %s", event_type, connection, exc, exc_info=True)
        await hub.relay.send(connection, _error("INTERNAL_ERROR", "Internal server error", event_type))


async def signaling_ws_handler(websocket: WebSocket, db: Session) -> None:
    """Full lifecycle handler for a signaling connection.

    Registration comes either from handshake metadata (``?token=``) or from a
    later ``register-connection`` event.  A bad handshake token closes the
    socket with 1008; everything after that is reported as error events and
    never closes the connection.
    """
    await websocket.accept()  # must accept before receive_text()
    hub: SignalingHub = websocket.app.state.hub
    connection = Connection(websocket)
    logger.info("WebSocket connected: %s", connection.connection_id)

    token = websocket.query_params.get("token")
    if token:
        user = get_user_from_token(token, db)
        if user is None:
            await websocket.close(code=1008)
            return
        await _register(hub, connection, user, websocket.query_params.get("displayName"))

    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_frame(hub, connection, raw, db)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        logger.exception("signaling_ws_handler: unexpected error: %s", exc)
    finally:
        # room teardown must finish before the connection is considered gone
        await hub.calls.disconnect(connection)
        if connection.user_id is not None and not hub.presence.is_online(connection.user_id):
            await presence_mirror.set_offline(connection.user_id)
        logger.info("WebSocket disconnected: %r", connection)
