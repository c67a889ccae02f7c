"""Group invitations: an invited user joins the group only after accepting.

An invitation is addressed to an existing account (looked up by e-mail) and
stays `pending` for 24 hours. Accepting creates the GroupMember row; pending
invitations past `expires_at` are swept to `expired` before they are read.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from eduflow.core import rbac
from eduflow.core.redis import publish_group_change
from eduflow.db.base import utcnow
from eduflow.db.models.group import Group, GroupMember, GroupRole
from eduflow.db.models.invitation import Invitation, InvitationStatus, default_expiry
from eduflow.db.models.user import User
from eduflow.services.result import CONFLICT, FORBIDDEN, INVALID, NOT_FOUND, Result, guarded
from eduflow.utils.notify import notify
from eduflow.utils.validation import is_valid_email

logger = logging.getLogger("eduflow.services.invitations")


def invitation_dict(inv: Invitation) -> dict:
    return {
        "id": inv.id,
        "group_id": inv.group_id,
        "group_name": inv.group.name if inv.group else None,
        "inviter_id": inv.inviter_id,
        "inviter_name": inv.inviter.display_name if inv.inviter else None,
        "invitee_id": inv.invitee_id,
        "email": inv.email,
        "role": inv.role.value,
        "message": inv.message or "",
        "status": inv.status.value,
        "expires_at": inv.expires_at,
        "responded_at": inv.responded_at,
        "created_at": inv.created_at,
    }


def _parse_status(status: str | None) -> InvitationStatus | None:
    if not status:
        return None
    try:
        return InvitationStatus(status)
    except ValueError:
        return None


def _sweep_expired(db: Session) -> int:
    """Mark overdue pending invitations expired. Caller commits."""
    return (
        db.query(Invitation)
        .filter(Invitation.status == InvitationStatus.PENDING, Invitation.expires_at < utcnow())
        .update({Invitation.status: InvitationStatus.EXPIRED}, synchronize_session=False)
    )


def _is_overdue(inv: Invitation) -> bool:
    return inv.expires_at is not None and inv.expires_at < utcnow()


@guarded(logger, "초대 생성 중 오류가 발생했습니다.")
def create_invitation(
    db: Session,
    group_id: int,
    actor: User,
    email: str,
    role: str = GroupRole.STUDENT.value,
    message: str = "",
) -> Result:
    group = db.get(Group, group_id)
    if group is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    try:
        role_enum = GroupRole(role)
    except ValueError:
        role_enum = None
    if role_enum is None or role_enum == GroupRole.OWNER:
        return Result.fail("유효하지 않은 역할입니다.", INVALID)

    address = (email or "").strip().lower()
    if not is_valid_email(address):
        return Result.fail("이메일 형식이 올바르지 않습니다.", INVALID)
    invitee = db.query(User).filter(User.email == address).first()
    if invitee is None:
        return Result.fail("해당 이메일의 사용자를 찾을 수 없습니다. 먼저 회원가입이 필요합니다.", NOT_FOUND)
    if rbac.group_role(db, group_id, invitee.id) is not None:
        return Result.fail("이미 해당 그룹의 멤버입니다.", CONFLICT)

    _sweep_expired(db)
    pending = (
        db.query(Invitation)
        .filter(
            Invitation.group_id == group_id,
            Invitation.invitee_id == invitee.id,
            Invitation.status == InvitationStatus.PENDING,
        )
        .first()
    )
    if pending is not None:
        return Result.fail("이미 대기 중인 초대가 있습니다.", CONFLICT)

    inv = Invitation(
        group_id=group_id,
        inviter_id=actor.id,
        invitee_id=invitee.id,
        email=address,
        role=role_enum,
        message=(message or "").strip(),
        status=InvitationStatus.PENDING,
        expires_at=default_expiry(),
    )
    db.add(inv)
    notify(db, invitee.id, f"[{group.name}] 그룹에 초대되었습니다.", type="invitation")
    db.commit()
    db.refresh(inv)
    logger.info("invitation %s: group %s -> user %s by %s", inv.id, group_id, invitee.id, actor.id)
    publish_group_change(group_id, "invitation", inv.id)
    return Result.ok(invitation_dict(inv))


def send_bulk_invitations(
    db: Session,
    group_id: int,
    actor: User,
    emails: list[str],
    role: str = GroupRole.STUDENT.value,
    message: str = "",
) -> Result:
    """One invitation per distinct address; failures are collected, not raised."""
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    sent: list[dict] = []
    failed: list[dict] = []
    seen: set[str] = set()
    for raw in emails:
        address = (raw or "").strip().lower()
        if not address or address in seen:
            continue
        seen.add(address)
        res = create_invitation(db, group_id, actor, address, role, message)
        if res.success:
            sent.append(res.data)
        else:
            failed.append({"email": address, "error": res.error or "알 수 없는 오류"})
    return Result.ok({"sent": sent, "failed": failed})


@guarded(logger, "초대 정보 조회 중 오류가 발생했습니다.")
def get_invitation(db: Session, invitation_id: int, user: User) -> Result:
    inv = db.get(Invitation, invitation_id)
    if inv is None:
        return Result.fail("초대를 찾을 수 없습니다.", NOT_FOUND)
    if user.id not in (inv.invitee_id, inv.inviter_id) and not rbac.can_manage_group(db, inv.group_id, user):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    return Result.ok(invitation_dict(inv))


@guarded(logger, "초대 수락 중 오류가 발생했습니다.")
def accept_invitation(db: Session, invitation_id: int, user: User) -> Result:
    inv = db.get(Invitation, invitation_id)
    if inv is None:
        return Result.fail("초대를 찾을 수 없습니다.", NOT_FOUND)
    if inv.invitee_id != user.id:
        return Result.fail("초대를 수락할 권한이 없습니다.", FORBIDDEN)
    if inv.status != InvitationStatus.PENDING:
        return Result.fail("이미 처리된 초대입니다.", INVALID)
    if _is_overdue(inv):
        inv.status = InvitationStatus.EXPIRED
        db.commit()
        return Result.fail("만료된 초대입니다.", INVALID)
    if rbac.group_role(db, inv.group_id, user.id) is not None:
        return Result.fail("이미 해당 그룹의 멤버입니다.", CONFLICT)

    m = GroupMember(group_id=inv.group_id, user_id=user.id, role=inv.role)
    db.add(m)
    inv.status = InvitationStatus.ACCEPTED
    inv.responded_at = utcnow()
    notify(db, inv.inviter_id, f"{user.display_name}님이 그룹 초대를 수락했습니다.", type="invitation")
    db.commit()
    db.refresh(inv)
    db.refresh(m)
    logger.info("invitation %s accepted by user %s", inv.id, user.id)
    publish_group_change(inv.group_id, "member", m.id)
    return Result.ok({"invitation": invitation_dict(inv), "membership_id": m.id})


@guarded(logger, "초대 거절 중 오류가 발생했습니다.")
def reject_invitation(db: Session, invitation_id: int, user: User) -> Result:
    inv = db.get(Invitation, invitation_id)
    if inv is None:
        return Result.fail("초대를 찾을 수 없습니다.", NOT_FOUND)
    if inv.invitee_id != user.id:
        return Result.fail("초대를 거절할 권한이 없습니다.", FORBIDDEN)
    if inv.status != InvitationStatus.PENDING:
        return Result.fail("이미 처리된 초대입니다.", INVALID)

    inv.status = InvitationStatus.REJECTED
    inv.responded_at = utcnow()
    notify(db, inv.inviter_id, f"{user.display_name}님이 그룹 초대를 거절했습니다.", type="invitation")
    db.commit()
    db.refresh(inv)
    publish_group_change(inv.group_id, "invitation", inv.id)
    return Result.ok(invitation_dict(inv))


@guarded(logger, "초대 취소 중 오류가 발생했습니다.")
def cancel_invitation(db: Session, invitation_id: int, actor: User) -> Result:
    inv = db.get(Invitation, invitation_id)
    if inv is None:
        return Result.fail("초대를 찾을 수 없습니다.", NOT_FOUND)
    if inv.inviter_id != actor.id and not rbac.can_manage_group(db, inv.group_id, actor):
        return Result.fail("초대를 취소할 권한이 없습니다.", FORBIDDEN)
    if inv.status != InvitationStatus.PENDING:
        return Result.fail("대기 중인 초대만 취소할 수 있습니다.", INVALID)

    group_id = inv.group_id
    db.delete(inv)
    db.commit()
    publish_group_change(group_id, "invitation", invitation_id)
    return Result.ok()


@guarded(logger, "초대 재전송 중 오류가 발생했습니다.")
def resend_invitation(db: Session, invitation_id: int, actor: User) -> Result:
    """Push the deadline out another 24 hours; an expired invitation reopens."""
    inv = db.get(Invitation, invitation_id)
    if inv is None:
        return Result.fail("초대를 찾을 수 없습니다.", NOT_FOUND)
    if inv.inviter_id != actor.id and not rbac.can_manage_group(db, inv.group_id, actor):
        return Result.fail("초대를 재전송할 권한이 없습니다.", FORBIDDEN)
    if inv.status not in (InvitationStatus.PENDING, InvitationStatus.EXPIRED):
        return Result.fail("대기 중인 초대만 재전송할 수 있습니다.", INVALID)
    if rbac.group_role(db, inv.group_id, inv.invitee_id) is not None:
        return Result.fail("이미 해당 그룹의 멤버입니다.", CONFLICT)

    inv.status = InvitationStatus.PENDING
    inv.expires_at = default_expiry()
    group_name = inv.group.name if inv.group else "그룹"
    notify(db, inv.invitee_id, f"[{group_name}] 그룹 초대가 다시 전송되었습니다.", type="invitation")
    db.commit()
    db.refresh(inv)
    return Result.ok(invitation_dict(inv))


def _listing(db: Session, q, status: str | None) -> Result:
    wanted = _parse_status(status)
    if status and wanted is None:
        return Result.fail("유효하지 않은 상태입니다.", INVALID)
    _sweep_expired(db)
    db.commit()
    if wanted is not None:
        q = q.filter(Invitation.status == wanted)
    rows = q.order_by(Invitation.created_at.desc(), Invitation.id.desc()).all()
    return Result.ok([invitation_dict(i) for i in rows])


@guarded(logger, "사용자 초대 목록 조회 중 오류가 발생했습니다.")
def list_user_invitations(db: Session, user: User, status: str | None = None) -> Result:
    return _listing(db, db.query(Invitation).filter(Invitation.invitee_id == user.id), status)


@guarded(logger, "보낸 초대 목록 조회 중 오류가 발생했습니다.")
def list_sent_invitations(db: Session, user: User, status: str | None = None) -> Result:
    return _listing(db, db.query(Invitation).filter(Invitation.inviter_id == user.id), status)


@guarded(logger, "그룹 초대 목록 조회 중 오류가 발생했습니다.")
def list_group_invitations(db: Session, group_id: int, actor: User, status: str | None = None) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    return _listing(db, db.query(Invitation).filter(Invitation.group_id == group_id), status)


@guarded(logger, "만료된 초대 처리 중 오류가 발생했습니다.")
def expire_old_invitations(db: Session) -> Result:
    count = _sweep_expired(db)
    db.commit()
    if count:
        logger.info("expired %s invitations", count)
    return Result.ok({"count": int(count)})


@guarded(logger, "초대 통계 조회 중 오류가 발생했습니다.")
def invitation_statistics(db: Session, group_id: int, actor: User) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    _sweep_expired(db)
    db.commit()

    counts = {s: 0 for s in InvitationStatus}
    for (status,) in db.query(Invitation.status).filter(Invitation.group_id == group_id).all():
        counts[status] += 1
    accepted = counts[InvitationStatus.ACCEPTED]
    responded = accepted + counts[InvitationStatus.REJECTED]
    return Result.ok(
        {
            "total_invitations": sum(counts.values()),
            "pending": counts[InvitationStatus.PENDING],
            "accepted": accepted,
            "rejected": counts[InvitationStatus.REJECTED],
            "expired": counts[InvitationStatus.EXPIRED],
            # percent of answered invitations that were accepted
            "acceptance_rate": round(accepted / responded * 100) if responded else 0,
        }
    )
