from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from eduflow.core.redis import get_redis
from eduflow.db.models.notification import Notification
from eduflow.db.models.user import User

logger = logging.getLogger("eduflow.badges")

# unread counts are cached briefly; every write path invalidates after commit
_BADGE_TTL_SECONDS = 15


def _key(user_id: int) -> str:
    return f"badge:{user_id}"


def count_unread(db: Session, user_id: int) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def get_badge_count(db: Session, user: User) -> int:
    """Unread notification count for the header badge, cached in Redis when configured."""
    r = get_redis()
    if r is not None:
        try:
            cached = r.get(_key(user.id))
            if cached is not None:
                return int(cached)
        except Exception as e:
            logger.warning("Badge cache read failed for user %s: %s", user.id, e)

    cnt = count_unread(db, user.id)

    if r is not None:
        try:
            r.setex(_key(user.id), _BADGE_TTL_SECONDS, cnt)
        except Exception as e:
            logger.warning("Badge cache write failed for user %s: %s", user.id, e)
    return cnt


def invalidate_badge(user_id: int) -> None:
    r = get_redis()
    if r is None:
        return
    try:
        r.delete(_key(user_id))
    except Exception as e:
        logger.warning("Badge cache invalidation failed for user %s: %s", user_id, e)
