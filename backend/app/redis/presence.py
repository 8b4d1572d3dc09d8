"""
Presence mirror — publishes "user X is online somewhere" to Redis.

Key scheme:
  {SERVER_DOMAIN}:presence:{user_id}  →  "online"
  TTL = REDIS_PRESENCE_TTL seconds, refreshed by connection heartbeats.

The in-memory PresenceRegistry remains the only authority for fanout inside a
process; this mirror lets other workers and the presence REST endpoint see
users connected elsewhere.  Failures are logged and swallowed: losing the
mirror must never break signaling.  If Redis is unavailable every call is a
no-op and lookups report "offline".
"""

import logging

from app.config import settings
from app.redis.client import get_redis

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


def presence_key(user_id: int) -> str:
    return f"{settings.SERVER_DOMAIN}:presence:{user_id}"


async def set_online(user_id: int) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        await r.setex(presence_key(user_id), settings.REDIS_PRESENCE_TTL, ONLINE)
    except Exception as exc:
        logger.warning("presence.set_online failed: %s", exc)


async def set_offline(user_id: int) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        await r.delete(presence_key(user_id))
    except Exception as exc:
        logger.warning("presence.set_offline failed: %s", exc)


async def heartbeat(user_id: int) -> None:
    """Refresh the TTL, re-creating the key if it already expired."""
    r = get_redis()
    if r is None:
        return
    try:
        if not await r.expire(presence_key(user_id), settings.REDIS_PRESENCE_TTL):
            await r.setex(presence_key(user_id), settings.REDIS_PRESENCE_TTL, ONLINE)
    except Exception as exc:
        logger.warning("presence.heartbeat failed: %s", exc)


async def get_status(user_id: int) -> str:
    r = get_redis()
    if r is None:
        return OFFLINE
    try:
        value = await r.get(presence_key(user_id))
        return value if value else OFFLINE
    except Exception as exc:
        logger.warning("presence.get_status failed: %s", exc)
        return OFFLINE


async def get_bulk_status(user_ids: list[int]) -> dict[int, str]:
    """Return {user_id: status} for multiple users in a single pipeline."""
    if not user_ids:
        return {}
    r = get_redis()
    if r is None:
        return {uid: OFFLINE for uid in user_ids}
    try:
        pipe = r.pipeline()
        for uid in user_ids:
            pipe.get(presence_key(uid))
        values = await pipe.execute()
        return {uid: (v if v else OFFLINE) for uid, v in zip(user_ids, values)}
    except Exception as exc:
        logger.warning("presence.get_bulk_status failed: %s", exc)
        return {uid: OFFLINE for uid in user_ids}
