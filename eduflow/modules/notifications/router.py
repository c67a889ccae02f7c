from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.services import notifications as svc
from eduflow.services.result import unwrap
from eduflow.utils.badges import get_badge_count

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(unread: bool = False, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.list_notifications(db, user, unread_only=unread))


@router.get("/badge")
def badge(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"badge_count": get_badge_count(db, user)}


# declared before /{notification_id}/read so "read-all" never parses as an id
@router.post("/read-all")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.mark_all_read(db, user))


@router.post("/{notification_id}/read")
def mark_read(notification_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.mark_read(db, user, notification_id))
