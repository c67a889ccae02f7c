from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require_member
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.group import (
    GroupCreateRequest,
    GroupUpdateRequest,
    MemberAddRequest,
    MemberRoleRequest,
    TransferOwnershipRequest,
)
from eduflow.services import groups as svc
from eduflow.services import statistics as stats_svc
from eduflow.services.result import unwrap

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("")
def list_groups(q: str = "", db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if q.strip():
        return unwrap(svc.search_groups(db, user, q))
    return unwrap(svc.list_user_groups(db, user))


@router.post("", status_code=201)
def create_group(payload: GroupCreateRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.create_group(db, user, payload.name, payload.description))


@router.get("/{group_id}")
def group_detail(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = unwrap(svc.get_group_with_members(db, group_id))
    require_member(db, group_id, user)
    return data


@router.patch("/{group_id}")
def update_group(
    group_id: int,
    payload: GroupUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.update_group(db, group_id, user, payload.name, payload.description))


@router.delete("/{group_id}")
def delete_group(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.delete_group(db, group_id, user))
    return {"success": True}


@router.get("/{group_id}/members")
def list_members(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = unwrap(svc.get_group_with_members(db, group_id))
    require_member(db, group_id, user)
    return data["members"]


@router.post("/{group_id}/members", status_code=201)
def add_member(
    group_id: int,
    payload: MemberAddRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(
        svc.add_group_member(db, group_id, user, payload.role, user_id=payload.user_id, email=payload.email)
    )


@router.patch("/{group_id}/members/{user_id}")
def change_member_role(
    group_id: int,
    user_id: int,
    payload: MemberRoleRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.update_group_member_role(db, group_id, user, user_id, payload.role))


@router.delete("/{group_id}/members/{user_id}")
def remove_member(group_id: int, user_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.remove_group_member(db, group_id, user, user_id))
    return {"success": True}


@router.post("/{group_id}/transfer")
def transfer(
    group_id: int,
    payload: TransferOwnershipRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.transfer_ownership(db, group_id, user, payload.new_owner_id))


@router.get("/{group_id}/statistics")
def statistics(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(stats_svc.group_statistics(db, group_id))
