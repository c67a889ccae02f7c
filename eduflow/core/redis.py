from __future__ import annotations

import json
import logging
from typing import Optional

import redis
from redis import Redis

from eduflow.core.config import settings

logger = logging.getLogger("eduflow.redis")

_client: Optional[Redis] = None


def get_redis() -> Optional[Redis]:
    """Return a singleton Redis client (or None if disabled / not reachable)."""
    global _client
    if _client is not None:
        return _client
    if not (settings.REDIS_URL or "").strip():
        return None
    try:
        _client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _client.ping()
        return _client
    except Exception as exc:
        logger.warning("Redis unavailable: %s", exc)
        _client = None
        return None


def group_channel(group_id: int) -> str:
    return f"group:{group_id}"


def publish_group_change(group_id: int | None, entity: str, entity_id: int | None = None) -> None:
    """Tell subscribers of a group that something changed; they refetch."""
    if group_id is None:
        return
    r = get_redis()
    if r is None:
        return
    message = json.dumps({"type": "changed", "entity": entity, "id": entity_id})
    try:
        r.publish(group_channel(group_id), message)
    except Exception as exc:
        logger.warning("Redis publish failed (%s): %s", group_channel(group_id), exc)
