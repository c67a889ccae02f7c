from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.config import settings
from eduflow.core.rbac import require, require_member
from eduflow.db.models.report import Report
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.report import (
    AssignReviewersRequest,
    CommentRequest,
    RejectRequest,
    ResetRequest,
    StudentReportUpdateRequest,
)
from eduflow.services import reports as svc
from eduflow.services import student_reports as student_reports_svc
from eduflow.services.result import unwrap
from eduflow.utils.pdf_report import build_report_pdf

router = APIRouter(tags=["reports"])


def _report_group(db: Session, report_id: int, user: User) -> int:
    r = db.get(Report, report_id)
    require(r is not None, "보고서를 찾을 수 없습니다.", 404)
    group_id = svc.report_group_id(r)
    require_member(db, group_id, user)
    return group_id


@router.get("/groups/{group_id}/reports")
def list_reports(
    group_id: int,
    stage: int | None = None,
    rejected: bool | None = None,
    class_id: int | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_member(db, group_id, user)
    return unwrap(svc.list_group_reports(db, group_id, stage=stage, rejected=rejected, class_id=class_id))


@router.get("/groups/{group_id}/reports/statistics")
def report_statistics(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(svc.report_statistics(db, group_id))


@router.get("/groups/{group_id}/reports/queue")
def reviewer_queue(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(svc.list_reviewer_queue(db, user, group_id))


@router.get("/groups/{group_id}/student-reports")
def list_student_reports(group_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_member(db, group_id, user)
    return unwrap(student_reports_svc.list_group_student_reports(db, group_id))


@router.get("/student-reports/{student_report_id}")
def student_report_detail(student_report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = unwrap(student_reports_svc.get_student_report(db, student_report_id))
    require_member(db, data["group_id"], user)
    return data


@router.get("/reports/{report_id}")
def report_detail(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    return unwrap(svc.get_report_details(db, report_id))


@router.get("/reports/{report_id}/state")
def report_state(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    return unwrap(svc.get_review_state(db, report_id, user.id))


@router.post("/reports/{report_id}/comment")
def comment(
    report_id: int,
    payload: CommentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _report_group(db, report_id, user)
    return unwrap(svc.advance_report_stage(db, report_id, user.id, payload.comment, payload.comment_type))


@router.post("/reports/{report_id}/reject")
def reject(
    report_id: int,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _report_group(db, report_id, user)
    return unwrap(svc.reject_report(db, report_id, user.id, payload.rejection_reason))


@router.post("/reports/{report_id}/reset")
def reset(
    report_id: int,
    payload: ResetRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _report_group(db, report_id, user)
    return unwrap(svc.reset_report(db, report_id, user, payload.reason))


@router.post("/reports/{report_id}/reviewers")
def assign_reviewers(
    report_id: int,
    payload: AssignReviewersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _report_group(db, report_id, user)
    return unwrap(svc.assign_reviewers(db, report_id, user, payload.time_teacher_id, payload.teacher_id))


@router.get("/reports/{report_id}/history")
def history(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    return unwrap(svc.get_report_history(db, report_id))


@router.get("/reports/{report_id}/summary")
def get_summary(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    return unwrap(student_reports_svc.get_student_report_for_report(db, report_id))


@router.post("/reports/{report_id}/summary")
def generate_summary(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    return unwrap(student_reports_svc.generate_report_summary(db, report_id, user))


@router.patch("/reports/{report_id}/summary")
def edit_summary(
    report_id: int,
    payload: StudentReportUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _report_group(db, report_id, user)
    current = unwrap(student_reports_svc.get_student_report_for_report(db, report_id))
    return unwrap(student_reports_svc.update_student_report(db, current["id"], user, payload.ai_report))


@router.get("/reports/{report_id}/pdf")
def download_pdf(report_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _report_group(db, report_id, user)
    details = unwrap(svc.get_report_details(db, report_id))
    require(details["state"]["is_complete"], "검토가 완료된 보고서만 내려받을 수 있습니다.", 400)

    pdf_bytes = build_report_pdf(details, app_name=settings.APP_NAME)
    filename = f"report_{report_id}.pdf"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=pdf_bytes, media_type="application/pdf", headers=headers)
