"""Groups data access: groups, membership and ownership."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from eduflow.core import rbac
from eduflow.core.redis import publish_group_change
from eduflow.db.models.classroom import ClassMember, ClassRoom
from eduflow.db.models.form import Form, FormQuestion, FormTarget
from eduflow.db.models.form_instance import FormAnswer, FormInstance
from eduflow.db.models.group import Group, GroupMember, GroupRole
from eduflow.db.models.invitation import Invitation
from eduflow.db.models.notification import Notification
from eduflow.db.models.report import Report
from eduflow.db.models.student import Student
from eduflow.db.models.student_report import StudentReport
from eduflow.db.models.user import User
from eduflow.db.models.workflow_log import WorkflowLog
from eduflow.services.result import CONFLICT, FORBIDDEN, INVALID, NOT_FOUND, Result, guarded

logger = logging.getLogger("eduflow.services.groups")


def group_dict(g: Group, role: GroupRole | None = None) -> dict:
    out = {
        "id": g.id,
        "name": g.name,
        "description": g.description or "",
        "owner_id": g.owner_id,
        "created_at": g.created_at,
        "updated_at": g.updated_at,
    }
    if role is not None:
        out["my_role"] = role.value
    return out


def member_dict(m: GroupMember) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "name": m.user.display_name if m.user else None,
        "email": m.user.email if m.user else None,
        "role": m.role.value,
        "role_label": m.role_label,
        "joined_at": m.joined_at,
    }


def _parse_role(role: str) -> GroupRole | None:
    try:
        return GroupRole(role)
    except ValueError:
        return None


@guarded(logger, "그룹 생성 중 오류가 발생했습니다.")
def create_group(db: Session, owner: User, name: str, description: str = "") -> Result:
    name = (name or "").strip()
    if not name:
        return Result.fail("그룹 이름은 필수 항목입니다.", INVALID)
    if len(name) > 200:
        return Result.fail("그룹 이름은 200자 이하로 입력해 주세요.", INVALID)

    g = Group(name=name, description=(description or "").strip(), owner_id=owner.id)
    db.add(g)
    db.flush()
    db.add(GroupMember(group_id=g.id, user_id=owner.id, role=GroupRole.OWNER))
    db.commit()
    db.refresh(g)
    logger.info("group %s created by user %s", g.id, owner.id)
    return Result.ok(group_dict(g, GroupRole.OWNER))


@guarded(logger, "그룹 조회 중 오류가 발생했습니다.")
def get_group(db: Session, group_id: int) -> Result:
    g = db.get(Group, group_id)
    if g is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    return Result.ok(group_dict(g))


@guarded(logger, "그룹 조회 중 오류가 발생했습니다.")
def get_group_with_members(db: Session, group_id: int) -> Result:
    g = db.get(Group, group_id)
    if g is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    members = (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id)
        .order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
        .all()
    )
    out = group_dict(g)
    out["members"] = [member_dict(m) for m in members]
    return Result.ok(out)


@guarded(logger, "그룹 목록 조회 중 오류가 발생했습니다.")
def list_user_groups(db: Session, user: User) -> Result:
    rows = (
        db.query(Group, GroupMember.role)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == user.id)
        .order_by(Group.updated_at.desc(), Group.id.desc())
        .all()
    )
    return Result.ok([group_dict(g, role) for g, role in rows])


@guarded(logger, "그룹 검색 중 오류가 발생했습니다.")
def search_groups(db: Session, user: User, query: str) -> Result:
    q = (query or "").strip()
    rows = (
        db.query(Group, GroupMember.role)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == user.id)
    )
    if q:
        rows = rows.filter(Group.name.contains(q))
    return Result.ok([group_dict(g, role) for g, role in rows.order_by(Group.name.asc()).all()])


@guarded(logger, "그룹 수정 중 오류가 발생했습니다.")
def update_group(db: Session, group_id: int, actor: User, name: str | None = None, description: str | None = None) -> Result:
    g = db.get(Group, group_id)
    if g is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    if name is not None:
        name = name.strip()
        if not name:
            return Result.fail("그룹 이름은 필수 항목입니다.", INVALID)
        g.name = name
    if description is not None:
        g.description = description.strip()
    db.commit()
    db.refresh(g)
    publish_group_change(g.id, "group", g.id)
    return Result.ok(group_dict(g))


@guarded(logger, "그룹 삭제 중 오류가 발생했습니다.")
def delete_group(db: Session, group_id: int, actor: User) -> Result:
    g = db.get(Group, group_id)
    if g is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not (actor.is_admin or rbac.is_owner(db, group_id, actor)):
        return Result.fail("그룹 소유자만 삭제할 수 있습니다.", FORBIDDEN)

    # dependants first (no ON DELETE CASCADE in the schema)
    form_ids = [fid for (fid,) in db.query(Form.id).filter(Form.group_id == group_id).all()]
    instance_ids = [
        iid for (iid,) in db.query(FormInstance.id).filter(FormInstance.form_id.in_(form_ids)).all()
    ] if form_ids else []
    report_ids = [
        rid for (rid,) in db.query(Report.id).filter(Report.form_id.in_(form_ids)).all()
    ] if form_ids else []

    if report_ids:
        db.query(WorkflowLog).filter(WorkflowLog.report_id.in_(report_ids)).delete(synchronize_session=False)
        db.query(Notification).filter(Notification.report_id.in_(report_ids)).delete(synchronize_session=False)
        db.query(Report).filter(Report.id.in_(report_ids)).delete(synchronize_session=False)
    db.query(StudentReport).filter(StudentReport.group_id == group_id).delete(synchronize_session=False)
    if instance_ids:
        db.query(FormAnswer).filter(FormAnswer.form_instance_id.in_(instance_ids)).delete(synchronize_session=False)
        db.query(FormInstance).filter(FormInstance.id.in_(instance_ids)).delete(synchronize_session=False)
    if form_ids:
        db.query(FormTarget).filter(FormTarget.form_id.in_(form_ids)).delete(synchronize_session=False)
        db.query(FormQuestion).filter(FormQuestion.form_id.in_(form_ids)).delete(synchronize_session=False)
        db.query(Form).filter(Form.id.in_(form_ids)).delete(synchronize_session=False)
    db.query(Invitation).filter(Invitation.group_id == group_id).delete(synchronize_session=False)
    db.query(Student).filter(Student.group_id == group_id).delete(synchronize_session=False)
    class_ids = [cid for (cid,) in db.query(ClassRoom.id).filter(ClassRoom.group_id == group_id).all()]
    if class_ids:
        db.query(ClassMember).filter(ClassMember.class_id.in_(class_ids)).delete(synchronize_session=False)
        db.query(ClassRoom).filter(ClassRoom.id.in_(class_ids)).delete(synchronize_session=False)

    db.delete(g)
    db.commit()
    logger.info("group %s deleted by user %s", group_id, actor.id)
    publish_group_change(group_id, "group", group_id)
    return Result.ok()


@guarded(logger, "멤버 추가 중 오류가 발생했습니다.")
def add_group_member(
    db: Session,
    group_id: int,
    actor: User,
    role: str,
    user_id: int | None = None,
    email: str | None = None,
) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    role_enum = _parse_role(role)
    if role_enum is None or role_enum == GroupRole.OWNER:
        return Result.fail("유효하지 않은 역할입니다.", INVALID)

    if user_id is not None:
        target = db.get(User, user_id)
    elif email:
        target = db.query(User).filter(User.email == email.strip().lower()).first()
    else:
        return Result.fail("추가할 사용자를 지정해 주세요.", INVALID)
    if target is None:
        return Result.fail("사용자를 찾을 수 없습니다.", NOT_FOUND)

    if rbac.group_role(db, group_id, target.id) is not None:
        return Result.fail("이미 그룹에 속한 사용자입니다.", CONFLICT)

    m = GroupMember(group_id=group_id, user_id=target.id, role=role_enum)
    db.add(m)
    db.commit()
    db.refresh(m)
    publish_group_change(group_id, "member", m.id)
    return Result.ok(member_dict(m))


def _member(db: Session, group_id: int, user_id: int) -> GroupMember | None:
    return (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .first()
    )


@guarded(logger, "멤버 역할 변경 중 오류가 발생했습니다.")
def update_group_member_role(db: Session, group_id: int, actor: User, user_id: int, role: str) -> Result:
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    m = _member(db, group_id, user_id)
    if m is None:
        return Result.fail("그룹 멤버를 찾을 수 없습니다.", NOT_FOUND)
    role_enum = _parse_role(role)
    if role_enum is None or role_enum == GroupRole.OWNER:
        return Result.fail("유효하지 않은 역할입니다.", INVALID)
    if m.role == GroupRole.OWNER:
        return Result.fail("소유자의 역할은 변경할 수 없습니다. 소유권 이전을 사용하세요.", INVALID)

    m.role = role_enum
    db.commit()
    publish_group_change(group_id, "member", m.id)
    return Result.ok(member_dict(m))


@guarded(logger, "멤버 제거 중 오류가 발생했습니다.")
def remove_group_member(db: Session, group_id: int, actor: User, user_id: int) -> Result:
    # members may always leave on their own
    if actor.id != user_id and not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    m = _member(db, group_id, user_id)
    if m is None:
        return Result.fail("그룹 멤버를 찾을 수 없습니다.", NOT_FOUND)
    if m.role == GroupRole.OWNER:
        return Result.fail("그룹 소유자는 제거할 수 없습니다.", INVALID)

    class_ids = [cid for (cid,) in db.query(ClassRoom.id).filter(ClassRoom.group_id == group_id).all()]
    if class_ids:
        db.query(ClassMember).filter(
            ClassMember.class_id.in_(class_ids), ClassMember.user_id == user_id
        ).delete(synchronize_session=False)
    db.delete(m)
    db.commit()
    publish_group_change(group_id, "member", None)
    return Result.ok()


@guarded(logger, "소유권 이전 중 오류가 발생했습니다.")
def transfer_ownership(db: Session, group_id: int, actor: User, new_owner_id: int) -> Result:
    g = db.get(Group, group_id)
    if g is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.is_owner(db, group_id, actor):
        return Result.fail("그룹 소유자만 소유권을 이전할 수 있습니다.", FORBIDDEN)
    if new_owner_id == actor.id:
        return Result.fail("이미 그룹 소유자입니다.", INVALID)

    new_m = _member(db, group_id, new_owner_id)
    if new_m is None:
        return Result.fail("새 소유자는 그룹 멤버여야 합니다.", INVALID)
    old_m = _member(db, group_id, actor.id)

    new_m.role = GroupRole.OWNER
    if old_m is not None:
        old_m.role = GroupRole.ADMIN
    g.owner_id = new_owner_id
    db.commit()
    logger.info("group %s ownership %s -> %s", group_id, actor.id, new_owner_id)
    publish_group_change(group_id, "group", group_id)
    return Result.ok(group_dict(g))
