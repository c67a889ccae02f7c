from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require, require_member
from eduflow.db.models.student import Student
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.student import StudentBatchRequest, StudentCreateRequest, StudentFields
from eduflow.services import form_instances as instances_svc
from eduflow.services import reports as reports_svc
from eduflow.services import students as svc
from eduflow.services.result import unwrap

router = APIRouter(tags=["students"])


def _student_group(db: Session, student_id: int, user: User) -> int:
    s = db.get(Student, student_id)
    require(s is not None, "학생을 찾을 수 없습니다.", 404)
    require_member(db, s.group_id, user)
    return s.group_id


@router.get("/groups/{group_id}/students")
def list_students(group_id: int, q: str = "", db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(svc.list_group_students(db, group_id, q or None))


@router.post("/groups/{group_id}/students", status_code=201)
def create_student(
    group_id: int,
    payload: StudentCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.create_student(db, user, group_id, **payload.model_dump(exclude_unset=True)))


@router.post("/groups/{group_id}/students/batch", status_code=201)
def create_students_batch(
    group_id: int,
    payload: StudentBatchRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = [row.model_dump(exclude_unset=True) for row in payload.rows]
    return unwrap(svc.create_students_batch(db, user, group_id, rows))


@router.get("/students/{student_id}")
def student_detail(student_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _student_group(db, student_id, user)
    return unwrap(svc.get_student(db, student_id))


@router.patch("/students/{student_id}")
def update_student(
    student_id: int,
    payload: StudentFields,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(svc.update_student(db, student_id, user, **payload.model_dump(exclude_unset=True)))


@router.delete("/students/{student_id}")
def delete_student(student_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.delete_student(db, student_id, user))
    return {"success": True}


@router.get("/students/{student_id}/instances")
def student_instances(student_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _student_group(db, student_id, user)
    return unwrap(instances_svc.list_student_instances(db, student_id))


@router.get("/students/{student_id}/reports")
def student_reports(student_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _student_group(db, student_id, user)
    return unwrap(reports_svc.list_student_reports(db, student_id))
