"""
Presence registry — which users are reachable in this process right now.

A user is online iff at least one Connection is registered for them.  Several
simultaneous connections per user (multi-device) are normal and every
user-addressed event fans out to all of them.

State is purely in-memory and process-local.  A connection that died without
a disconnect signal stays registered until the transport keepalive notices.
"""

import logging
from collections import defaultdict

from app.websocket.connection import Connection

logger = logging.getLogger(__name__)


class PresenceRegistry:
    def __init__(self) -> None:
        # user_id -> {connection_id: Connection}
        self._connections: dict[int, dict[str, Connection]] = defaultdict(dict)

    def register(self, user_id: int, connection: Connection, display_name: str | None = None) -> bool:
        """Record ``connection`` under ``user_id``.

        Returns True when this registration brought the user online.
        """
        if connection.user_id is not None and connection.user_id != user_id:
            self.unregister(connection)
        came_online = not self.is_online(user_id)
        connection.bind(user_id, display_name)
        self._connections[user_id][connection.connection_id] = connection
        logger.info(
            "Connection %s registered for user %s (%d live)",
            connection.connection_id,
            user_id,
            len(self._connections[user_id]),
        )
        return came_online

    def unregister(self, connection: Connection) -> bool:
        """Remove exactly this connection.

        No-op if it is already gone.  Returns True when the user lost their
        last live connection.
        """
        user_id = connection.user_id
        if user_id is None:
            return False
        live = self._connections.get(user_id)
        if not live or live.pop(connection.connection_id, None) is None:
            return False
        if live:
            return False
        del self._connections[user_id]
        logger.info("User %s has no live connections left", user_id)
        return True

    def is_online(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def channels_for(self, user_id: int) -> set[Connection]:
        return set(self._connections.get(user_id, {}).values())

    def connection_count(self, user_id: int) -> int:
        return len(self._connections.get(user_id, {}))

    def online_users(self) -> list[int]:
        return [uid for uid, live in self._connections.items() if live]

    def total_connections(self) -> int:
        return sum(len(live) for live in self._connections.values())
