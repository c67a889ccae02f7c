from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require, require_member
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.invitation import BulkInvitationRequest, InvitationCreateRequest
from eduflow.services import invitations as svc
from eduflow.services.result import unwrap

router = APIRouter(tags=["invitations"])


@router.get("/groups/{group_id}/invitations")
def group_invitations(
    group_id: int,
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_member(db, group_id, user)
    return unwrap(svc.list_group_invitations(db, group_id, user, status))


@router.post("/groups/{group_id}/invitations", status_code=201)
def invite(
    group_id: int,
    payload: InvitationCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_member(db, group_id, user)
    return unwrap(svc.create_invitation(db, group_id, user, payload.email, payload.role, payload.message))


@router.post("/groups/{group_id}/invitations/bulk")
def invite_bulk(
    group_id: int,
    payload: BulkInvitationRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_member(db, group_id, user)
    return unwrap(svc.send_bulk_invitations(db, group_id, user, payload.emails, payload.role, payload.message))


@router.get("/groups/{group_id}/invitations/statistics")
def invitation_statistics(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(svc.invitation_statistics(db, group_id, user))


@router.get("/invitations")
def my_invitations(status: str | None = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.list_user_invitations(db, user, status))


# declared before /invitations/{invitation_id} so "sent" never parses as an id
@router.get("/invitations/sent")
def sent_invitations(status: str | None = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.list_sent_invitations(db, user, status))


@router.post("/invitations/expire")
def expire_invitations(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require(user.is_admin)
    return unwrap(svc.expire_old_invitations(db))


@router.get("/invitations/{invitation_id}")
def invitation_detail(invitation_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.get_invitation(db, invitation_id, user))


@router.post("/invitations/{invitation_id}/accept")
def accept(invitation_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.accept_invitation(db, invitation_id, user))


@router.post("/invitations/{invitation_id}/reject")
def reject(invitation_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.reject_invitation(db, invitation_id, user))


@router.post("/invitations/{invitation_id}/resend")
def resend(invitation_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.resend_invitation(db, invitation_id, user))


@router.delete("/invitations/{invitation_id}")
def cancel(invitation_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.cancel_invitation(db, invitation_id, user))
