"""
The per-process signaling state, bundled so it can live on ``app.state``.

One hub is created per application lifespan.  It assumes a single worker:
nothing here is shared between processes, and horizontal scaling would need
the registry and directory moved to an external store.
"""

from sqlalchemy.orm import Session

from app.services.delivery import MessageDeliveryProtocol
from app.services.message_store import SqlMessageStore, SqlUserDirectory
from app.websocket.presence import PresenceRegistry
from app.websocket.rooms import RoomDirectory
from app.websocket.signaling import CallSignalingEngine
from app.websocket.transport import TransportRelay


class SignalingHub:
    def __init__(self) -> None:
        self.presence = PresenceRegistry()
        self.rooms = RoomDirectory()
        self.relay = TransportRelay(self.presence)
        self.calls = CallSignalingEngine(self.presence, self.rooms, self.relay)

    def delivery(self, db: Session) -> MessageDeliveryProtocol:
        return MessageDeliveryProtocol(SqlMessageStore(db), self.relay)

    def users(self, db: Session) -> SqlUserDirectory:
        return SqlUserDirectory(db)
