"""Classes data access."""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from eduflow.core import rbac
from eduflow.core.redis import publish_group_change
from eduflow.db.models.classroom import ClassMember, ClassRole, ClassRoom
from eduflow.db.models.form_instance import FormInstance
from eduflow.db.models.group import GroupRole
from eduflow.db.models.report import Report, ReportStage
from eduflow.db.models.student import Student
from eduflow.db.models.user import User
from eduflow.services.result import CONFLICT, FORBIDDEN, INVALID, NOT_FOUND, Result, guarded

logger = logging.getLogger("eduflow.services.classes")

# which group roles may hold which class role
_COMPATIBLE = {
    ClassRole.TEACHER: (GroupRole.OWNER, GroupRole.ADMIN, GroupRole.TEACHER),
    ClassRole.TIME_TEACHER: (GroupRole.OWNER, GroupRole.ADMIN, GroupRole.TEACHER, GroupRole.TIME_TEACHER),
}


def class_dict(c: ClassRoom) -> dict:
    return {
        "id": c.id,
        "group_id": c.group_id,
        "name": c.name,
        "description": c.description or "",
        "created_at": c.created_at,
        "updated_at": c.updated_at,
    }


def class_member_dict(m: ClassMember) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "name": m.user.display_name if m.user else None,
        "role": m.role.value,
        "assigned_at": m.assigned_at,
    }


def _name_taken(db: Session, group_id: int, name: str, exclude_id: int | None = None) -> bool:
    q = db.query(ClassRoom.id).filter(ClassRoom.group_id == group_id, ClassRoom.name == name)
    if exclude_id is not None:
        q = q.filter(ClassRoom.id != exclude_id)
    return q.first() is not None


@guarded(logger, "반 생성 중 오류가 발생했습니다.")
def create_class(db: Session, group_id: int, actor: User, name: str, description: str = "") -> Result:
    if not rbac.can_manage_content(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    name = (name or "").strip()
    if not name:
        return Result.fail("반 이름은 필수 항목입니다.", INVALID)
    if _name_taken(db, group_id, name):
        return Result.fail("같은 이름의 반이 이미 있습니다.", CONFLICT)

    c = ClassRoom(group_id=group_id, name=name, description=(description or "").strip())
    db.add(c)
    db.commit()
    db.refresh(c)
    publish_group_change(group_id, "class", c.id)
    return Result.ok(class_dict(c))


@guarded(logger, "반 조회 중 오류가 발생했습니다.")
def get_class_with_members(db: Session, class_id: int) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    out = class_dict(c)
    out["members"] = [class_member_dict(m) for m in sorted(c.members, key=lambda m: m.id)]
    out["student_count"] = db.query(Student).filter(Student.class_id == class_id).count()
    return Result.ok(out)


@guarded(logger, "반 목록 조회 중 오류가 발생했습니다.")
def list_group_classes(db: Session, group_id: int) -> Result:
    classes = db.query(ClassRoom).filter(ClassRoom.group_id == group_id).order_by(ClassRoom.name.asc()).all()
    counts = {
        cid: n
        for cid, n in db.query(Student.class_id, func.count(Student.id))
        .filter(Student.group_id == group_id, Student.class_id.isnot(None))
        .group_by(Student.class_id)
        .all()
    }
    out = []
    for c in classes:
        d = class_dict(c)
        d["student_count"] = counts.get(c.id, 0)
        out.append(d)
    return Result.ok(out)


@guarded(logger, "반 수정 중 오류가 발생했습니다.")
def update_class(db: Session, class_id: int, actor: User, name: str | None = None, description: str | None = None) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, c.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    if name is not None:
        name = name.strip()
        if not name:
            return Result.fail("반 이름은 필수 항목입니다.", INVALID)
        if _name_taken(db, c.group_id, name, exclude_id=c.id):
            return Result.fail("같은 이름의 반이 이미 있습니다.", CONFLICT)
        c.name = name
    if description is not None:
        c.description = description.strip()
    db.commit()
    db.refresh(c)
    publish_group_change(c.group_id, "class", c.id)
    return Result.ok(class_dict(c))


@guarded(logger, "반 삭제 중 오류가 발생했습니다.")
def delete_class(db: Session, class_id: int, actor: User) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, c.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    open_reports = (
        db.query(Report.id)
        .filter(Report.class_id == class_id, Report.stage > int(ReportStage.AWAITING_STUDENT))
        .first()
    )
    if open_reports is not None:
        return Result.fail("진행 중인 보고서가 있는 반은 삭제할 수 없습니다.", INVALID)

    group_id = c.group_id
    # students stay in the group, unassigned
    db.query(Student).filter(Student.class_id == class_id).update({Student.class_id: None}, synchronize_session=False)
    db.query(Report).filter(Report.class_id == class_id).update({Report.class_id: None}, synchronize_session=False)
    db.query(FormInstance).filter(FormInstance.class_id == class_id).update(
        {FormInstance.class_id: None}, synchronize_session=False
    )
    db.delete(c)
    db.commit()
    publish_group_change(group_id, "class", class_id)
    return Result.ok()


@guarded(logger, "반 멤버 추가 중 오류가 발생했습니다.")
def add_class_member(db: Session, class_id: int, actor: User, user_id: int, role: str) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, c.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    try:
        role_enum = ClassRole(role)
    except ValueError:
        return Result.fail("유효하지 않은 역할입니다.", INVALID)

    g_role = rbac.group_role(db, c.group_id, user_id)
    if g_role is None:
        return Result.fail("그룹 멤버만 반에 배정할 수 있습니다.", INVALID)
    if g_role not in _COMPATIBLE[role_enum]:
        return Result.fail("그룹 역할과 맞지 않는 반 역할입니다.", INVALID)

    exists = db.query(ClassMember).filter(ClassMember.class_id == class_id, ClassMember.user_id == user_id).first()
    if exists is not None:
        return Result.fail("이미 반에 배정된 사용자입니다.", CONFLICT)

    m = ClassMember(class_id=class_id, user_id=user_id, role=role_enum)
    db.add(m)
    db.commit()
    db.refresh(m)
    publish_group_change(c.group_id, "class", c.id)
    return Result.ok(class_member_dict(m))


@guarded(logger, "반 멤버 제거 중 오류가 발생했습니다.")
def remove_class_member(db: Session, class_id: int, actor: User, user_id: int) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, c.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    m = db.query(ClassMember).filter(ClassMember.class_id == class_id, ClassMember.user_id == user_id).first()
    if m is None:
        return Result.fail("반 멤버를 찾을 수 없습니다.", NOT_FOUND)
    db.delete(m)
    db.commit()
    publish_group_change(c.group_id, "class", c.id)
    return Result.ok()


def _group_students(db: Session, group_id: int, student_ids: list[int]) -> list[Student] | None:
    """All requested students, or None if any is missing or outside the group."""
    ids = sorted(set(student_ids))
    if not ids:
        return []
    rows = db.query(Student).filter(Student.id.in_(ids), Student.group_id == group_id).all()
    if len(rows) != len(ids):
        return None
    return rows


@guarded(logger, "학생 배정 중 오류가 발생했습니다.")
def assign_students_to_class(db: Session, class_id: int, actor: User, student_ids: list[int]) -> Result:
    c = db.get(ClassRoom, class_id)
    if c is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, c.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    students = _group_students(db, c.group_id, student_ids)
    if students is None:
        return Result.fail("그룹에 속하지 않은 학생이 포함되어 있습니다.", INVALID)

    for s in students:
        s.class_id = class_id
    db.commit()
    publish_group_change(c.group_id, "student", None)
    return Result.ok({"class_id": class_id, "assigned": len(students)})


@guarded(logger, "학생 이동 중 오류가 발생했습니다.")
def move_students_to_class(
    db: Session, from_class_id: int, to_class_id: int, actor: User, student_ids: list[int]
) -> Result:
    src = db.get(ClassRoom, from_class_id)
    dst = db.get(ClassRoom, to_class_id)
    if src is None or dst is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)
    if src.group_id != dst.group_id:
        return Result.fail("같은 그룹의 반으로만 이동할 수 있습니다.", INVALID)
    if not rbac.can_manage_content(db, src.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    students = _group_students(db, src.group_id, student_ids)
    if students is None or any(s.class_id != from_class_id for s in students):
        return Result.fail("원래 반에 속하지 않은 학생이 포함되어 있습니다.", INVALID)

    for s in students:
        s.class_id = to_class_id
    db.commit()
    publish_group_change(src.group_id, "student", None)
    return Result.ok({"from_class_id": from_class_id, "to_class_id": to_class_id, "moved": len(students)})
