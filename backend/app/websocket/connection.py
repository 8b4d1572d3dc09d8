import json
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol


class TextSocket(Protocol):
    async def send_text(self, data: str) -> None: ...


class Connection:
    """One live transport session for a user device.

    Created unregistered when the socket is accepted; ``user_id`` is bound
    later by a registration (handshake token or ``register-connection``).
    """

    def __init__(self, websocket: TextSocket, connection_id: str | None = None) -> None:
        self.websocket = websocket
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id: int | None = None
        self.display_name: str | None = None
        self.registered_at: datetime | None = None

    @property
    def is_registered(self) -> bool:
        return self.user_id is not None

    def bind(self, user_id: int, display_name: str | None) -> None:
        self.user_id = user_id
        self.display_name = display_name
        self.registered_at = datetime.now(timezone.utc)

    async def send(self, payload: dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(payload, default=str))

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id[:8]} user={self.user_id}>"
