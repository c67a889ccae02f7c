from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require, require_member
from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.classroom import (
    ClassCreateRequest,
    ClassMemberRequest,
    ClassUpdateRequest,
    MoveStudentsRequest,
    StudentIdsRequest,
)
from eduflow.services import classes as svc
from eduflow.services import statistics as stats_svc
from eduflow.services import students as students_svc
from eduflow.services.result import unwrap

router = APIRouter(tags=["classes"])


def _class_group(db: Session, class_id: int, user: User) -> int:
    c = db.get(ClassRoom, class_id)
    require(c is not None, "반을 찾을 수 없습니다.", 404)
    require_member(db, c.group_id, user)
    return c.group_id


@router.get("/groups/{group_id}/classes")
def list_classes(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(svc.list_group_classes(db, group_id))


@router.post("/groups/{group_id}/classes", status_code=201)
def create_class(
    group_id: int,
    payload: ClassCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.create_class(db, group_id, user, payload.name, payload.description))


@router.get("/classes/{class_id}")
def class_detail(class_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _class_group(db, class_id, user)
    return unwrap(svc.get_class_with_members(db, class_id))


@router.patch("/classes/{class_id}")
def update_class(
    class_id: int,
    payload: ClassUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.update_class(db, class_id, user, payload.name, payload.description))


@router.delete("/classes/{class_id}")
def delete_class(class_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.delete_class(db, class_id, user))
    return {"success": True}


@router.post("/classes/{class_id}/members", status_code=201)
def add_member(
    class_id: int,
    payload: ClassMemberRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.add_class_member(db, class_id, user, payload.user_id, payload.role))


@router.delete("/classes/{class_id}/members/{user_id}")
def remove_member(class_id: int, user_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.remove_class_member(db, class_id, user, user_id))
    return {"success": True}


@router.get("/classes/{class_id}/students")
def class_students(class_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _class_group(db, class_id, user)
    return unwrap(students_svc.list_class_students(db, class_id))


@router.post("/classes/{class_id}/students")
def assign_students(
    class_id: int,
    payload: StudentIdsRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.assign_students_to_class(db, class_id, user, payload.student_ids))


@router.post("/classes/{class_id}/students/move")
def move_students(
    class_id: int,
    payload: MoveStudentsRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.move_students_to_class(db, class_id, payload.to_class_id, user, payload.student_ids))


@router.get("/classes/{class_id}/statistics")
def statistics(class_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _class_group(db, class_id, user)
    return unwrap(stats_svc.class_statistics(db, class_id))
