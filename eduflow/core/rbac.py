from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy.orm import Session

from eduflow.db.models.group import GroupMember, GroupRole
from eduflow.db.models.user import User


FORBIDDEN = "접근 권한이 없습니다"

MANAGER_ROLES = (GroupRole.OWNER, GroupRole.ADMIN)
STAFF_ROLES = (GroupRole.OWNER, GroupRole.ADMIN, GroupRole.TEACHER, GroupRole.TIME_TEACHER)
REVIEWER_ROLES = (GroupRole.OWNER, GroupRole.ADMIN, GroupRole.TEACHER, GroupRole.TIME_TEACHER)


def require(condition: bool, msg: str = FORBIDDEN, status_code: int = 403) -> None:
    """Small helper used across routers.

    Defaults to 403 (permission denied). For validation errors or not-found cases,
    pass `status_code=400/404`.
    """
    if not condition:
        raise HTTPException(status_code=status_code, detail=msg)


def group_role(db: Session, group_id: int, user_id: int | None) -> GroupRole | None:
    if user_id is None:
        return None
    m = (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .first()
    )
    return m.role if m else None


def is_member(db: Session, group_id: int, user: User) -> bool:
    return user.is_admin or group_role(db, group_id, user.id) is not None


def is_owner(db: Session, group_id: int, user: User) -> bool:
    return group_role(db, group_id, user.id) == GroupRole.OWNER


def can_manage_group(db: Session, group_id: int, user: User) -> bool:
    """Owner/admin: settings, members, reviewer assignment."""
    return user.is_admin or group_role(db, group_id, user.id) in MANAGER_ROLES


def can_manage_content(db: Session, group_id: int, user: User) -> bool:
    """Classes, students, forms: managers plus full teachers."""
    if user.is_admin:
        return True
    return group_role(db, group_id, user.id) in (GroupRole.OWNER, GroupRole.ADMIN, GroupRole.TEACHER)


def is_staff(db: Session, group_id: int, user: User) -> bool:
    if user.is_admin:
        return True
    return group_role(db, group_id, user.id) in STAFF_ROLES


def require_member(db: Session, group_id: int | None, user: User) -> None:
    """Every group-scoped endpoint goes through this."""
    require(group_id is not None and is_member(db, group_id, user))


def is_reviewer(db: Session, group_id: int | None, user_id: int | None) -> bool:
    """Current group role still allows reviewing. Assignment alone is not enough."""
    return group_id is not None and group_role(db, group_id, user_id) in REVIEWER_ROLES
