"""
Transport relay — the publish/subscribe fabric under the signaling core.

Two kinds of channel exist:

* user channels, resolved through the PresenceRegistry to every live
  connection of that user;
* room channels, holding the connections that joined a call room.

A send to a socket that has already gone away is logged and skipped; the
owning connection's handler runs the real teardown when its receive loop ends.
"""

import logging
from collections import defaultdict
from typing import Any

from app.websocket.connection import Connection
from app.websocket.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class TransportRelay:
    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence
        # room_id -> {connection_id: Connection}
        self._rooms: dict[str, dict[str, Connection]] = defaultdict(dict)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(self, connection: Connection, payload: dict[str, Any]) -> bool:
        """Send to a single connection. Returns False if the socket is dead."""
        try:
            await connection.send(payload)
            return True
        except Exception as exc:
            logger.warning("Dropping %r for %r: %s", payload.get("type"), connection, exc)
            return False

    async def publish_to_user(
        self,
        user_id: int,
        payload: dict[str, Any],
        exclude: Connection | None = None,
    ) -> int:
        """Fan ``payload`` out to every live connection of ``user_id``.

        Returns how many connections accepted it.
        """
        delivered = 0
        for connection in self._presence.channels_for(user_id):
            if connection is exclude:
                continue
            if await self.send(connection, payload):
                delivered += 1
        return delivered

    async def publish_to_room(self, room_id: str, payload: dict[str, Any]) -> int:
        delivered = 0
        for connection in list(self._rooms.get(room_id, {}).values()):
            if await self.send(connection, payload):
                delivered += 1
        return delivered

    # ------------------------------------------------------------------
    # Room channel membership
    # ------------------------------------------------------------------

    def join(self, room_id: str, connection: Connection) -> None:
        self._rooms[room_id][connection.connection_id] = connection

    def leave(self, room_id: str, connection: Connection) -> None:
        members = self._rooms.get(room_id)
        if not members:
            return
        members.pop(connection.connection_id, None)
        if not members:
            self._rooms.pop(room_id, None)

    def leave_all(self, connection: Connection) -> list[str]:
        """Drop ``connection`` from every room channel; returns the rooms it left."""
        left = [room_id for room_id, members in self._rooms.items() if connection.connection_id in members]
        for room_id in left:
            self.leave(room_id, connection)
        return left

    def close_room(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
