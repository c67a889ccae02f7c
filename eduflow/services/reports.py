"""Reports data access and the persisted side of the review workflow.

Stage rules live in `eduflow.core.workflow`; this module loads the report,
checks who is calling, applies the transition there and then writes the
history row, the instance status, notifications and the group change event.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from eduflow.core import rbac, workflow
from eduflow.core.config import settings
from eduflow.core.redis import publish_group_change
from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.form import Form
from eduflow.db.models.form_instance import FormAnswer
from eduflow.db.models.report import Report, ReportStage
from eduflow.db.models.student import Student
from eduflow.db.models.user import User
from eduflow.db.models.workflow_log import WorkflowLog
from eduflow.services.result import FORBIDDEN, INVALID, NOT_FOUND, Result, guarded
from eduflow.utils.notify import notify

logger = logging.getLogger("eduflow.services.reports")


def _user_name(db: Session, user_id: int | None) -> str | None:
    if user_id is None:
        return None
    u = db.get(User, user_id)
    return u.display_name if u else None


def report_dict(report: Report) -> dict:
    return {
        "id": report.id,
        "form_id": report.form_id,
        "form_title": report.form.title if report.form else None,
        "form_instance_id": report.form_instance_id,
        "student_id": report.student_id,
        "student_name": report.student.name if report.student else None,
        "class_id": report.class_id,
        "stage": int(report.stage or 0),
        "time_teacher_id": report.time_teacher_id,
        "teacher_id": report.teacher_id,
        "time_teacher_comment": report.time_teacher_comment,
        "time_teacher_completed_at": report.time_teacher_completed_at,
        "teacher_comment": report.teacher_comment,
        "teacher_completed_at": report.teacher_completed_at,
        "rejected_at": report.rejected_at,
        "rejected_by": report.rejected_by,
        "rejection_reason": report.rejection_reason,
        "final_report": report.final_report,
        "created_at": report.created_at,
        "updated_at": report.updated_at,
        "state": workflow.derive_review_state(report).as_dict(),
    }


def report_group_id(report: Report) -> int | None:
    return report.form.group_id if report.form else None


def record_transition(
    db: Session,
    report: Report,
    actor_id: int,
    action: str,
    from_stage: int,
    to_stage: int,
    comment: str = "",
) -> WorkflowLog:
    """History row plus instance status sync. Caller commits."""
    log = WorkflowLog(
        report_id=report.id,
        actor_id=actor_id,
        action=action,
        from_stage=int(from_stage),
        to_stage=int(to_stage),
        comment=comment or "",
    )
    db.add(log)
    if report.instance is not None:
        report.instance.status = workflow.instance_status_for(report)
    return log


def may_reject(db: Session, report: Report, user: User | None) -> bool:
    """The awaited reviewer (still holding a reviewer role) or a group manager."""
    if user is None or not workflow.can_reject(report):
        return False
    group_id = report_group_id(report)
    state = workflow.derive_review_state(report)
    if state.awaiting_user_id == user.id and rbac.is_reviewer(db, group_id, user.id):
        return True
    return group_id is not None and rbac.can_manage_group(db, group_id, user)


def _student_label(report: Report) -> str:
    name = report.student.name if report.student else "학생"
    title = report.form.title if report.form else "평가지"
    return f"[{title}] {name}"


@guarded(logger, "보고서 단계 진행 중 오류가 발생했습니다.")
def advance_report_stage(db: Session, report_id: int, user_id: int, comment: str, comment_type: str) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)

    expected = workflow.comment_type_for(report, user_id)
    if not rbac.is_reviewer(db, report_group_id(report), user_id):
        expected = None
    if expected is None or expected != comment_type:
        logger.info("advance denied: report=%s user=%s type=%s", report_id, user_id, comment_type)
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    text = (comment or "").strip()
    if len(text) < settings.MIN_COMMENT_LENGTH:
        return Result.fail(f"코멘트는 최소 {settings.MIN_COMMENT_LENGTH}자 이상 입력해 주세요.", INVALID)

    from_stage = workflow.effective_stage(report)
    t = workflow.apply_comment(report, expected, text)
    record_transition(db, report, user_id, t.action, from_stage, t.to_stage, text)

    label = _student_label(report)
    if t.to_stage == ReportStage.AWAITING_TEACHER:
        notify(db, report.teacher_id, f"{label} 보고서의 선생님 검토가 필요합니다.", report.id, "review")
    else:
        creator_id = report.form.creator_id if report.form else None
        if creator_id != user_id:
            notify(db, creator_id, f"{label} 보고서가 완료되었습니다.", report.id, "completed")
        student_user = report.student.user_id if report.student else None
        notify(db, student_user, f"{label} 보고서가 완료되었습니다.", report.id, "completed")

    db.commit()
    db.refresh(report)
    logger.info("report %s advanced %s -> %s by user %s", report.id, int(from_stage), int(t.to_stage), user_id)
    publish_group_change(report_group_id(report), "report", report.id)
    return Result.ok(report_dict(report))


@guarded(logger, "보고서 반려 중 오류가 발생했습니다.")
def reject_report(db: Session, report_id: int, rejected_by: int, rejection_reason: str) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)

    actor = db.get(User, rejected_by)
    group_id = report_group_id(report)
    if actor is None or not rbac.is_staff(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    # stage errors first: after a rejection the awaited user is no longer the reviewer
    state = workflow.derive_review_state(report)
    if not workflow.can_reject(report):
        if state.is_rejected:
            return Result.fail("이미 반려된 보고서입니다.", INVALID)
        return Result.fail("현재 단계에서는 반려할 수 없습니다.", INVALID)
    if not may_reject(db, report, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    reason = (rejection_reason or "").strip()
    if not reason:
        return Result.fail("반려 사유를 입력해 주세요.", INVALID)

    from_stage = workflow.effective_stage(report)
    workflow.apply_rejection(report, rejected_by, reason)
    to_stage = workflow.effective_stage(report)
    record_transition(db, report, rejected_by, "reject", from_stage, to_stage, reason)

    # control goes back to whoever acted last
    back_to = workflow.derive_review_state(report).awaiting_user_id
    notify(db, back_to, f"{_student_label(report)} 보고서가 반려되었습니다: {reason}", report.id, "rejected")

    db.commit()
    db.refresh(report)
    logger.info("report %s rejected by user %s", report.id, rejected_by)
    publish_group_change(group_id, "report", report.id)
    return Result.ok(report_dict(report))


@guarded(logger, "보고서 초기화 중 오류가 발생했습니다.")
def reset_report(db: Session, report_id: int, actor: User, reason: str = "") -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    group_id = report_group_id(report)
    if not rbac.can_manage_content(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    if not workflow.can_reset(report):
        return Result.fail("이미 초기 상태인 보고서입니다.", INVALID)

    from_stage = workflow.effective_stage(report)
    workflow.apply_reset(report)
    if report.instance is not None:
        report.instance.submitted_at = None
    record_transition(db, report, actor.id, "reset", from_stage, ReportStage.AWAITING_STUDENT, (reason or "").strip())

    student_user = report.student.user_id if report.student else None
    notify(db, student_user, f"{_student_label(report)} 평가지를 다시 작성해 주세요.", report.id, "reset")

    db.commit()
    db.refresh(report)
    publish_group_change(group_id, "report", report.id)
    return Result.ok(report_dict(report))


@guarded(logger, "검토자 지정 중 오류가 발생했습니다.")
def assign_reviewers(
    db: Session,
    report_id: int,
    actor: User,
    time_teacher_id: int | None = None,
    teacher_id: int | None = None,
) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    group_id = report_group_id(report)
    if not rbac.can_manage_group(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    if time_teacher_id is None and teacher_id is None:
        return Result.fail("지정할 검토자를 선택해 주세요.", INVALID)

    for uid in (time_teacher_id, teacher_id):
        if uid is not None and rbac.group_role(db, group_id, uid) not in rbac.REVIEWER_ROLES:
            return Result.fail("검토자는 그룹의 교사 역할 멤버여야 합니다.", INVALID)

    if time_teacher_id is not None:
        report.time_teacher_id = time_teacher_id
    if teacher_id is not None:
        report.teacher_id = teacher_id

    state = workflow.derive_review_state(report)
    if state.awaiting in ("time_teacher", "teacher"):
        notify(db, state.awaiting_user_id, f"{_student_label(report)} 보고서의 검토자로 지정되었습니다.", report.id, "review")

    db.commit()
    db.refresh(report)
    publish_group_change(group_id, "report", report.id)
    return Result.ok(report_dict(report))


def _answer_value(a: FormAnswer):
    if a.rating_response is not None:
        return a.rating_response
    if a.number_response is not None:
        return a.number_response
    return a.text_response


@guarded(logger, "보고서 조회 중 오류가 발생했습니다.")
def get_report_details(db: Session, report_id: int) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)

    out = report_dict(report)
    answers = {}
    if report.instance is not None:
        answers = {a.question_id: a for a in report.instance.answers}
        out["submitted_at"] = report.instance.submitted_at
        out["class_average"] = report.instance.class_average
    out["group_id"] = report_group_id(report)
    out["questions"] = [
        {
            "id": q.id,
            "question_text": q.question_text,
            "question_type": q.question_type.value,
            "is_required": bool(q.is_required),
            "rating_max": q.rating_max,
            "is_score": bool(q.is_score),
            "answer": _answer_value(answers[q.id]) if q.id in answers else None,
        }
        for q in (report.form.questions if report.form else [])
    ]
    classroom = db.get(ClassRoom, report.class_id) if report.class_id else None
    out["class_name"] = classroom.name if classroom else None
    out["time_teacher_name"] = _user_name(db, report.time_teacher_id)
    out["teacher_name"] = _user_name(db, report.teacher_id)
    out["rejected_by_name"] = _user_name(db, report.rejected_by)
    return Result.ok(out)


@guarded(logger, "보고서 상태 조회 중 오류가 발생했습니다.")
def get_review_state(db: Session, report_id: int, user_id: int | None = None) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    out = workflow.derive_review_state(report).as_dict()
    comment_type = workflow.comment_type_for(report, user_id)
    if not rbac.is_reviewer(db, report_group_id(report), user_id):
        comment_type = None
    out["comment_type"] = comment_type
    out["can_comment"] = comment_type is not None
    out["can_reject"] = may_reject(db, report, db.get(User, user_id) if user_id is not None else None)
    return Result.ok(out)


def _group_reports_query(db: Session, group_id: int):
    return db.query(Report).join(Form, Form.id == Report.form_id).filter(Form.group_id == group_id)


@guarded(logger, "보고서 목록 조회 중 오류가 발생했습니다.")
def list_group_reports(
    db: Session,
    group_id: int,
    stage: int | None = None,
    rejected: bool | None = None,
    class_id: int | None = None,
) -> Result:
    q = _group_reports_query(db, group_id)
    if stage is not None:
        q = q.filter(Report.stage == int(stage))
    if rejected is True:
        q = q.filter(Report.rejected_at.isnot(None), Report.stage > int(ReportStage.AWAITING_STUDENT))
    elif rejected is False:
        q = q.filter(Report.rejected_at.is_(None))
    if class_id is not None:
        q = q.filter(Report.class_id == class_id)
    rows = q.order_by(Report.updated_at.desc(), Report.id.desc()).all()
    return Result.ok([report_dict(r) for r in rows])


@guarded(logger, "보고서 목록 조회 중 오류가 발생했습니다.")
def list_student_reports(db: Session, student_id: int) -> Result:
    if db.get(Student, student_id) is None:
        return Result.fail("학생을 찾을 수 없습니다.", NOT_FOUND)
    rows = db.query(Report).filter(Report.student_id == student_id).order_by(Report.updated_at.desc()).all()
    return Result.ok([report_dict(r) for r in rows])


@guarded(logger, "검토 대기 목록 조회 중 오류가 발생했습니다.")
def list_reviewer_queue(db: Session, user: User, group_id: int) -> Result:
    candidates = (
        _group_reports_query(db, group_id)
        .filter(
            or_(Report.time_teacher_id == user.id, Report.teacher_id == user.id),
            Report.stage > int(ReportStage.AWAITING_STUDENT),
        )
        .order_by(Report.updated_at.asc(), Report.id.asc())
        .all()
    )
    queue = [r for r in candidates if workflow.has_permission(r, user.id)]
    return Result.ok([report_dict(r) for r in queue])


@guarded(logger, "보고서 이력 조회 중 오류가 발생했습니다.")
def get_report_history(db: Session, report_id: int) -> Result:
    if db.get(Report, report_id) is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    rows = (
        db.query(WorkflowLog)
        .filter(WorkflowLog.report_id == report_id)
        .order_by(WorkflowLog.created_at.asc(), WorkflowLog.id.asc())
        .all()
    )
    return Result.ok(
        [
            {
                "id": w.id,
                "actor_id": w.actor_id,
                "actor_name": _user_name(db, w.actor_id),
                "action": w.action,
                "from_stage": w.from_stage,
                "to_stage": w.to_stage,
                "comment": w.comment,
                "created_at": w.created_at,
            }
            for w in rows
        ]
    )


def compute_report_statistics(db: Session, group_id: int) -> dict:
    by_stage = dict(
        _group_reports_query(db, group_id)
        .with_entities(Report.stage, func.count(Report.id))
        .group_by(Report.stage)
        .all()
    )
    rejected = (
        _group_reports_query(db, group_id)
        .filter(Report.rejected_at.isnot(None), Report.stage > int(ReportStage.AWAITING_STUDENT))
        .count()
    )
    total = sum(by_stage.values())
    out = {"total": total}
    for stage in ReportStage:
        out[f"stage_{int(stage)}"] = int(by_stage.get(int(stage), 0))
    out["rejected"] = rejected
    out["completion_rate"] = round(out["stage_3"] / total * 100) if total else 0
    return out


@guarded(logger, "보고서 통계 조회 중 오류가 발생했습니다.")
def report_statistics(db: Session, group_id: int) -> Result:
    return Result.ok(compute_report_statistics(db, group_id))
