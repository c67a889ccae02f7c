from __future__ import annotations

from datetime import timedelta

from eduflow.core import rbac
from eduflow.db.base import utcnow
from eduflow.db.models.group import GroupRole
from eduflow.db.models.invitation import Invitation, InvitationStatus
from eduflow.db.models.notification import Notification
from eduflow.services import invitations as svc
from eduflow.services.result import CONFLICT, FORBIDDEN, INVALID, NOT_FOUND


def _invite(db, world, user, role="teacher"):
    return svc.create_invitation(db, world.group["id"], world.owner, user.email, role)


def test_invite_then_accept_creates_membership(db, world, make_user):
    newbie = make_user("newbie")
    res = _invite(db, world, newbie)
    assert res.success, res.error
    assert res.data["status"] == "pending"
    assert res.data["expires_at"] - res.data["created_at"] >= timedelta(hours=23, minutes=59)
    assert db.query(Notification).filter(Notification.user_id == newbie.id, Notification.type == "invitation").count() == 1

    # pending invitation does not grant access yet
    assert rbac.group_role(db, world.group["id"], newbie.id) is None

    accepted = svc.accept_invitation(db, res.data["id"], newbie)
    assert accepted.success, accepted.error
    assert accepted.data["invitation"]["status"] == "accepted"
    assert accepted.data["invitation"]["responded_at"] is not None
    assert rbac.group_role(db, world.group["id"], newbie.id) == GroupRole.TEACHER

    again = svc.accept_invitation(db, res.data["id"], newbie)
    assert again.code == INVALID
    assert again.error == "이미 처리된 초대입니다."


def test_create_invitation_rules(db, world, make_user):
    newbie = make_user("newbie")
    gid = world.group["id"]

    assert svc.create_invitation(db, gid, world.teacher, newbie.email, "student").code == FORBIDDEN
    assert svc.create_invitation(db, gid, world.owner, newbie.email, "owner").code == INVALID
    assert svc.create_invitation(db, gid, world.owner, "nobody@example.com", "student").code == NOT_FOUND
    assert svc.create_invitation(db, gid, world.owner, world.teacher.email, "student").code == CONFLICT

    assert _invite(db, world, newbie).success
    dup = _invite(db, world, newbie)
    assert dup.code == CONFLICT
    assert dup.error == "이미 대기 중인 초대가 있습니다."


def test_only_invitee_may_answer(db, world, make_user):
    newbie = make_user("newbie")
    inv_id = _invite(db, world, newbie).data["id"]

    assert svc.accept_invitation(db, inv_id, world.outsider).code == FORBIDDEN
    assert svc.reject_invitation(db, inv_id, world.outsider).code == FORBIDDEN

    res = svc.reject_invitation(db, inv_id, newbie)
    assert res.success, res.error
    assert res.data["status"] == "rejected"
    assert rbac.group_role(db, world.group["id"], newbie.id) is None


def test_expired_invitation_cannot_be_accepted(db, world, make_user):
    newbie = make_user("newbie")
    inv_id = _invite(db, world, newbie).data["id"]
    inv = db.get(Invitation, inv_id)
    inv.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    res = svc.accept_invitation(db, inv_id, newbie)
    assert res.code == INVALID
    assert res.error == "만료된 초대입니다."
    assert db.get(Invitation, inv_id).status == InvitationStatus.EXPIRED

    # resend reopens it for another day
    resent = svc.resend_invitation(db, inv_id, world.owner)
    assert resent.success, resent.error
    assert resent.data["status"] == "pending"
    assert svc.accept_invitation(db, inv_id, newbie).success


def test_expire_sweep_and_statistics(db, world, make_user):
    users = [make_user(f"u{i}") for i in range(4)]
    ids = [_invite(db, world, u, "student").data["id"] for u in users]

    svc.accept_invitation(db, ids[0], users[0])
    svc.accept_invitation(db, ids[1], users[1])
    svc.reject_invitation(db, ids[2], users[2])
    db.get(Invitation, ids[3]).expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    assert svc.expire_old_invitations(db).data == {"count": 1}
    stats = svc.invitation_statistics(db, world.group["id"], world.owner).data
    assert stats == {
        "total_invitations": 4,
        "pending": 0,
        "accepted": 2,
        "rejected": 1,
        "expired": 1,
        "acceptance_rate": 67,
    }
    assert svc.invitation_statistics(db, world.group["id"], world.teacher).code == FORBIDDEN


def test_cancel_only_pending(db, world, make_user):
    a, b = make_user("a"), make_user("b")
    first = _invite(db, world, a).data["id"]
    second = _invite(db, world, b).data["id"]

    assert svc.cancel_invitation(db, first, world.outsider).code == FORBIDDEN
    assert svc.cancel_invitation(db, first, world.owner).success
    assert db.get(Invitation, first) is None

    svc.accept_invitation(db, second, b)
    res = svc.cancel_invitation(db, second, world.owner)
    assert res.code == INVALID
    assert res.error == "대기 중인 초대만 취소할 수 있습니다."


def test_bulk_send_collects_failures(db, world, make_user):
    a, b = make_user("a"), make_user("b")
    res = svc.send_bulk_invitations(
        db,
        world.group["id"],
        world.owner,
        [a.email, b.email.upper(), a.email, "ghost@example.com", world.teacher.email],
        "student",
    )
    assert res.success, res.error
    assert sorted(i["email"] for i in res.data["sent"]) == sorted([a.email, b.email])
    assert [f["email"] for f in res.data["failed"]] == ["ghost@example.com", world.teacher.email]


def test_list_filters_by_status(db, world, make_user):
    newbie = make_user("newbie")
    inv_id = _invite(db, world, newbie).data["id"]

    mine = svc.list_user_invitations(db, newbie).data
    assert [i["id"] for i in mine] == [inv_id]
    assert svc.list_user_invitations(db, newbie, "accepted").data == []
    assert svc.list_user_invitations(db, newbie, "bogus").code == INVALID

    sent = svc.list_sent_invitations(db, world.owner, "pending").data
    assert [i["id"] for i in sent] == [inv_id]
    assert [i["id"] for i in svc.list_group_invitations(db, world.group["id"], world.owner).data] == [inv_id]


def test_delete_group_removes_invitations(db, world, make_user):
    from eduflow.services import groups as groups_svc

    _invite(db, world, make_user("newbie"))
    assert groups_svc.delete_group(db, world.group["id"], world.owner).success
    assert db.query(Invitation).count() == 0


def test_invitation_flow_over_http(client, world, make_user, login):
    newbie = make_user("newbie")
    gid = world.group["id"]

    assert login(world.outsider).post(f"/groups/{gid}/invitations", json={"email": newbie.email}).status_code == 403

    api = login(world.owner)
    created = api.post(f"/groups/{gid}/invitations", json={"email": newbie.email, "role": "time_teacher"})
    assert created.status_code == 201, created.text
    inv_id = created.json()["id"]
    assert [i["id"] for i in api.get("/invitations/sent").json()] == [inv_id]

    api = login(newbie)
    assert api.get(f"/groups/{gid}/students").status_code == 403
    assert [i["id"] for i in api.get("/invitations", params={"status": "pending"}).json()] == [inv_id]
    accepted = api.post(f"/invitations/{inv_id}/accept")
    assert accepted.status_code == 200
    assert api.get(f"/groups/{gid}/students").status_code == 200

    stats = login(world.owner).get(f"/groups/{gid}/invitations/statistics").json()
    assert stats["accepted"] == 1
    assert stats["acceptance_rate"] == 100

    # expiry sweep is a site-admin operation
    assert login(world.owner).post("/invitations/expire").status_code == 403
