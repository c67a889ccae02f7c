from __future__ import annotations

from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.group import Group, GroupRole
from eduflow.db.models.report import Report
from eduflow.db.models.student import Student
from eduflow.services import classes as classes_svc
from eduflow.services import groups as groups_svc
from eduflow.services.result import CONFLICT, FORBIDDEN, INVALID, NOT_FOUND


def test_create_group_makes_owner_member(db, make_user):
    owner = make_user("owner")
    res = groups_svc.create_group(db, owner, "  영어반  ", "설명")
    assert res.success
    assert res.data["name"] == "영어반"
    assert res.data["my_role"] == "owner"

    assert groups_svc.get_group(db, res.data["id"]).data["description"] == "설명"
    detail = groups_svc.get_group_with_members(db, res.data["id"]).data
    assert [(m["user_id"], m["role"]) for m in detail["members"]] == [(owner.id, "owner")]


def test_create_group_requires_name(db, make_user):
    res = groups_svc.create_group(db, make_user("owner"), "   ")
    assert res.code == INVALID


def test_list_and_search_only_my_groups(db, make_user):
    a, b = make_user("a"), make_user("b")
    groups_svc.create_group(db, a, "수학 심화")
    groups_svc.create_group(db, a, "국어")
    groups_svc.create_group(db, b, "수학 기초")

    assert {g["name"] for g in groups_svc.list_user_groups(db, a).data} == {"수학 심화", "국어"}
    assert [g["name"] for g in groups_svc.search_groups(db, a, "수학").data] == ["수학 심화"]


def test_member_management(db, world, make_user):
    gid = world.group["id"]
    newbie = make_user("newbie")

    dup = groups_svc.add_group_member(db, gid, world.owner, "teacher", user_id=world.teacher.id)
    assert dup.code == CONFLICT

    by_email = groups_svc.add_group_member(db, gid, world.owner, "student", email="NEWBIE@example.com")
    assert by_email.success, by_email.error

    as_owner = groups_svc.add_group_member(db, gid, world.owner, "owner", user_id=world.outsider.id)
    assert as_owner.code == INVALID

    denied = groups_svc.add_group_member(db, gid, world.teacher, "student", user_id=world.outsider.id)
    assert denied.code == FORBIDDEN

    promoted = groups_svc.update_group_member_role(db, gid, world.owner, newbie.id, "admin")
    assert promoted.data["role"] == "admin"

    # self-leave is always allowed
    assert groups_svc.remove_group_member(db, gid, newbie, newbie.id).success
    owner_removal = groups_svc.remove_group_member(db, gid, world.owner, world.owner.id)
    assert owner_removal.code == INVALID


def test_removing_member_drops_class_assignment(db, world):
    gid = world.group["id"]
    assert groups_svc.remove_group_member(db, gid, world.owner, world.teacher.id).success
    members = classes_svc.get_class_with_members(db, world.classroom["id"]).data["members"]
    assert world.teacher.id not in [m["user_id"] for m in members]


def test_transfer_ownership(db, world):
    gid = world.group["id"]
    denied = groups_svc.transfer_ownership(db, gid, world.teacher, world.teacher.id)
    assert denied.code == FORBIDDEN

    res = groups_svc.transfer_ownership(db, gid, world.owner, world.teacher.id)
    assert res.success, res.error
    assert db.get(Group, gid).owner_id == world.teacher.id

    roles = {m["user_id"]: m["role"] for m in groups_svc.get_group_with_members(db, gid).data["members"]}
    assert roles[world.teacher.id] == GroupRole.OWNER.value
    assert roles[world.owner.id] == GroupRole.ADMIN.value


def test_delete_group_removes_everything(db, submitted):
    gid = submitted.group["id"]
    assert groups_svc.delete_group(db, gid, submitted.teacher).code == FORBIDDEN

    assert groups_svc.delete_group(db, gid, submitted.owner).success
    db.expire_all()
    assert db.get(Group, gid) is None
    assert db.query(Student).count() == 0
    assert db.query(Report).count() == 0
    assert db.query(ClassRoom).count() == 0


def test_class_names_unique_per_group(db, world):
    gid = world.group["id"]
    dup = classes_svc.create_class(db, gid, world.owner, "1반")
    assert dup.code == CONFLICT
    assert classes_svc.create_class(db, gid, world.time_teacher, "2반").code == FORBIDDEN

    listed = classes_svc.list_group_classes(db, gid).data
    assert [(c["name"], c["student_count"]) for c in listed] == [("1반", 1)]


def test_class_member_role_must_match_group_role(db, world):
    cid = world.classroom["id"]
    res = classes_svc.add_class_member(db, cid, world.owner, world.student_user.id, "teacher")
    assert res.code == INVALID
    res = classes_svc.add_class_member(db, cid, world.owner, world.outsider.id, "teacher")
    assert res.code == INVALID
    res = classes_svc.add_class_member(db, cid, world.owner, world.teacher.id, "teacher")
    assert res.code == CONFLICT
    assert classes_svc.remove_class_member(db, cid, world.owner, world.teacher.id).success


def test_move_students_between_classes(db, world):
    gid = world.group["id"]
    other = classes_svc.create_class(db, gid, world.owner, "2반").data
    sid = world.student["id"]

    wrong = classes_svc.move_students_to_class(db, other["id"], world.classroom["id"], world.owner, [sid])
    assert wrong.code == INVALID

    res = classes_svc.move_students_to_class(db, world.classroom["id"], other["id"], world.owner, [sid])
    assert res.data["moved"] == 1
    assert db.get(Student, sid).class_id == other["id"]


def test_delete_class_blocked_by_reports_in_review(db, submitted):
    cid = submitted.classroom["id"]
    assert classes_svc.delete_class(db, cid, submitted.owner).code == INVALID


def test_delete_class_unassigns_students(db, world):
    cid = world.classroom["id"]
    assert classes_svc.delete_class(db, cid, world.owner).success
    db.expire_all()
    assert db.get(Student, world.student["id"]).class_id is None
    assert db.get(Report, world.report_id).class_id is None
    assert classes_svc.get_class_with_members(db, cid).code == NOT_FOUND
