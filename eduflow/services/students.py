"""Students data access."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from eduflow.core import rbac
from eduflow.core.redis import publish_group_change
from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.form_instance import FormAnswer, FormInstance
from eduflow.db.models.group import Group
from eduflow.db.models.notification import Notification
from eduflow.db.models.report import Report, ReportStage
from eduflow.db.models.student import Student
from eduflow.db.models.student_report import StudentReport
from eduflow.db.models.user import User
from eduflow.db.models.workflow_log import WorkflowLog
from eduflow.services.result import FORBIDDEN, INVALID, NOT_FOUND, Result, guarded
from eduflow.utils.validation import format_phone, is_valid_phone

logger = logging.getLogger("eduflow.services.students")

_FIELDS = ("name", "student_number", "phone", "parent_phone", "class_id", "user_id")


def student_dict(s: Student) -> dict:
    return {
        "id": s.id,
        "group_id": s.group_id,
        "class_id": s.class_id,
        "class_name": s.classroom.name if s.classroom else None,
        "user_id": s.user_id,
        "name": s.name,
        "student_number": s.student_number,
        "phone": s.phone,
        "parent_phone": s.parent_phone,
        "created_at": s.created_at,
        "updated_at": s.updated_at,
    }


def _clean(db: Session, group_id: int, data: dict[str, Any], partial: bool = False) -> tuple[dict, str | None]:
    """Normalise one student row. Returns (values, error)."""
    out: dict[str, Any] = {}

    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if not name:
            return {}, "학생 이름은 필수 항목입니다."
        out["name"] = name

    if "student_number" in data:
        out["student_number"] = (data.get("student_number") or "").strip() or None

    for key in ("phone", "parent_phone"):
        if key not in data:
            continue
        raw = (data.get(key) or "").strip()
        if not raw:
            out[key] = None
            continue
        phone = format_phone(raw)
        if not is_valid_phone(phone):
            return {}, "전화번호 형식이 올바르지 않습니다."
        out[key] = phone

    if "class_id" in data:
        class_id = data.get("class_id")
        if class_id is not None:
            c = db.get(ClassRoom, class_id)
            if c is None or c.group_id != group_id:
                return {}, "반을 찾을 수 없습니다."
        out["class_id"] = class_id

    if "user_id" in data:
        user_id = data.get("user_id")
        if user_id is not None and db.get(User, user_id) is None:
            return {}, "사용자를 찾을 수 없습니다."
        out["user_id"] = user_id

    return out, None


@guarded(logger, "학생 등록 중 오류가 발생했습니다.")
def create_student(db: Session, actor: User, group_id: int, **data: Any) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    values, error = _clean(db, group_id, {k: v for k, v in data.items() if k in _FIELDS})
    if error:
        return Result.fail(error, INVALID)

    s = Student(group_id=group_id, **values)
    db.add(s)
    db.commit()
    db.refresh(s)
    publish_group_change(group_id, "student", s.id)
    return Result.ok(student_dict(s))


@guarded(logger, "학생 일괄 등록 중 오류가 발생했습니다.")
def create_students_batch(db: Session, actor: User, group_id: int, rows: list[dict]) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    if not rows:
        return Result.fail("등록할 학생이 없습니다.", INVALID)

    # validate everything before the first insert
    cleaned = []
    for idx, row in enumerate(rows):
        values, error = _clean(db, group_id, {k: v for k, v in row.items() if k in _FIELDS})
        if error:
            return Result.fail(f"{idx + 1}번째 행: {error}", INVALID)
        cleaned.append(values)

    students = [Student(group_id=group_id, **values) for values in cleaned]
    db.add_all(students)
    db.commit()
    for s in students:
        db.refresh(s)
    logger.info("batch created %s students in group %s", len(students), group_id)
    publish_group_change(group_id, "student", None)
    return Result.ok([student_dict(s) for s in students])


@guarded(logger, "학생 목록 조회 중 오류가 발생했습니다.")
def list_group_students(db: Session, group_id: int, query: str | None = None) -> Result:
    q = db.query(Student).filter(Student.group_id == group_id)
    if query:
        q = q.filter(Student.name.contains(query.strip()))
    return Result.ok([student_dict(s) for s in q.order_by(Student.name.asc(), Student.id.asc()).all()])


@guarded(logger, "학생 목록 조회 중 오류가 발생했습니다.")
def list_class_students(db: Session, class_id: int) -> Result:
    if db.get(ClassRoom, class_id) is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    rows = db.query(Student).filter(Student.class_id == class_id).order_by(Student.name.asc(), Student.id.asc()).all()
    return Result.ok([student_dict(s) for s in rows])


@guarded(logger, "학생 조회 중 오류가 발생했습니다.")
def get_student(db: Session, student_id: int) -> Result:
    s = db.get(Student, student_id)
    if s is None:
        return Result.fail("학생을 찾을 수 없습니다.", NOT_FOUND)
    return Result.ok(student_dict(s))


@guarded(logger, "학생 수정 중 오류가 발생했습니다.")
def update_student(db: Session, student_id: int, actor: User, **data: Any) -> Result:
    s = db.get(Student, student_id)
    if s is None:
        return Result.fail("학생을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, s.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    values, error = _clean(db, s.group_id, {k: v for k, v in data.items() if k in _FIELDS}, partial=True)
    if error:
        return Result.fail(error, INVALID)
    for k, v in values.items():
        setattr(s, k, v)
    db.commit()
    db.refresh(s)
    publish_group_change(s.group_id, "student", s.id)
    return Result.ok(student_dict(s))


@guarded(logger, "학생 삭제 중 오류가 발생했습니다.")
def delete_student(db: Session, student_id: int, actor: User) -> Result:
    s = db.get(Student, student_id)
    if s is None:
        return Result.fail("학생을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, s.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    in_review = (
        db.query(Report.id)
        .filter(Report.student_id == student_id, Report.stage > int(ReportStage.AWAITING_STUDENT))
        .first()
    )
    if in_review is not None:
        return Result.fail("진행 중이거나 완료된 보고서가 있는 학생은 삭제할 수 없습니다.", INVALID)

    # untouched stage-0 reports and their instances go with the student
    report_ids = [rid for (rid,) in db.query(Report.id).filter(Report.student_id == student_id).all()]
    if report_ids:
        db.query(WorkflowLog).filter(WorkflowLog.report_id.in_(report_ids)).delete(synchronize_session=False)
        db.query(Notification).filter(Notification.report_id.in_(report_ids)).delete(synchronize_session=False)
        db.query(Report).filter(Report.id.in_(report_ids)).delete(synchronize_session=False)
    instance_ids = [iid for (iid,) in db.query(FormInstance.id).filter(FormInstance.student_id == student_id).all()]
    if instance_ids:
        db.query(FormAnswer).filter(FormAnswer.form_instance_id.in_(instance_ids)).delete(synchronize_session=False)
        db.query(FormInstance).filter(FormInstance.id.in_(instance_ids)).delete(synchronize_session=False)
    db.query(StudentReport).filter(StudentReport.student_id == student_id).delete(synchronize_session=False)

    group_id = s.group_id
    db.delete(s)
    db.commit()
    publish_group_change(group_id, "student", student_id)
    return Result.ok()
