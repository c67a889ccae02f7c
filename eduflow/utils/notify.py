from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from eduflow.db.models.notification import Notification
from eduflow.utils.badges import invalidate_badge

_PENDING_BADGES = "eduflow.pending_badges"


def notify(db: Session, user_id: int | None, message: str, report_id: int | None = None, type: str = "info"):
    """Create an in-app notification (unread).

    Note: Caller should commit the DB session. The recipient's cached badge is
    dropped once that commit succeeds. A missing recipient is a no-op.
    """
    if user_id is None:
        return None
    n = Notification(user_id=user_id, report_id=report_id, type=type, message=message[:500], is_read=False)
    db.add(n)
    db.info.setdefault(_PENDING_BADGES, set()).add(user_id)
    return n


@event.listens_for(Session, "after_commit")
def _invalidate_after_commit(session: Session) -> None:
    for user_id in session.info.pop(_PENDING_BADGES, ()):
        invalidate_badge(user_id)


@event.listens_for(Session, "after_soft_rollback")
def _discard_on_rollback(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_BADGES, None)
