from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from eduflow.core.rbac import FORBIDDEN as FORBIDDEN_MSG
from eduflow.db.models.notification import Notification
from eduflow.db.models.user import User
from eduflow.services.result import FORBIDDEN, NOT_FOUND, Result, guarded
from eduflow.utils.badges import get_badge_count, invalidate_badge

logger = logging.getLogger("eduflow.services.notifications")


def notification_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "report_id": n.report_id,
        "type": n.type,
        "message": n.message,
        "is_read": bool(n.is_read),
        "created_at": n.created_at,
    }


@guarded(logger, "알림 조회 중 오류가 발생했습니다.")
def list_notifications(db: Session, user: User, unread_only: bool = False, limit: int = 300) -> Result:
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    notes = q.order_by(Notification.id.desc()).limit(limit).all()
    return Result.ok({"items": [notification_dict(n) for n in notes], "unread": get_badge_count(db, user)})


@guarded(logger, "알림 처리 중 오류가 발생했습니다.")
def mark_read(db: Session, user: User, notification_id: int) -> Result:
    n = db.get(Notification, notification_id)
    if n is None:
        return Result.fail("알림을 찾을 수 없습니다.", NOT_FOUND)
    # only the recipient may mark it read
    if n.user_id != user.id:
        return Result.fail(FORBIDDEN_MSG, FORBIDDEN)
    n.is_read = True
    db.commit()
    invalidate_badge(user.id)
    return Result.ok(notification_dict(n))


@guarded(logger, "알림 처리 중 오류가 발생했습니다.")
def mark_all_read(db: Session, user: User) -> Result:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    invalidate_badge(user.id)
    return Result.ok({"updated": int(updated)})
