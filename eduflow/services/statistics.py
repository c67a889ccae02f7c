"""Aggregates for group, form and class dashboards."""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.form import Form, QuestionType
from eduflow.db.models.form_instance import FormAnswer, FormInstance
from eduflow.db.models.group import Group, GroupMember, GroupRole
from eduflow.db.models.report import Report, ReportStage
from eduflow.db.models.student import Student
from eduflow.services.reports import compute_report_statistics
from eduflow.services.result import NOT_FOUND, Result, guarded

logger = logging.getLogger("eduflow.services.statistics")


def _rate(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


@guarded(logger, "그룹 통계 조회 중 오류가 발생했습니다.")
def group_statistics(db: Session, group_id: int) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)

    by_role = dict(
        db.query(GroupMember.role, func.count(GroupMember.id))
        .filter(GroupMember.group_id == group_id)
        .group_by(GroupMember.role)
        .all()
    )
    members = {role.value: int(by_role.get(role, 0)) for role in GroupRole}
    members["total"] = sum(members.values())

    forms_total = db.query(Form).filter(Form.group_id == group_id).count()
    forms_sent = db.query(Form).filter(Form.group_id == group_id, Form.is_sent.is_(True)).count()

    return Result.ok(
        {
            "group_id": group_id,
            "members": members,
            "classes": db.query(ClassRoom).filter(ClassRoom.group_id == group_id).count(),
            "students": db.query(Student).filter(Student.group_id == group_id).count(),
            "forms": forms_total,
            "sent_forms": forms_sent,
            "reports": compute_report_statistics(db, group_id),
        }
    )


@guarded(logger, "평가지 통계 조회 중 오류가 발생했습니다.")
def form_statistics(db: Session, form_id: int) -> Result:
    form = db.get(Form, form_id)
    if form is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)

    targeted = db.query(FormInstance).filter(FormInstance.form_id == form_id).count()
    submitted = (
        db.query(FormInstance)
        .filter(FormInstance.form_id == form_id, FormInstance.submitted_at.isnot(None))
        .count()
    )
    completed = (
        db.query(Report)
        .filter(
            Report.form_id == form_id,
            Report.stage == int(ReportStage.COMPLETE),
            Report.rejected_at.is_(None),
        )
        .count()
    )

    questions = []
    for q in form.questions:
        if q.question_type == QuestionType.TEXT:
            continue
        column = FormAnswer.rating_response if q.question_type == QuestionType.RATING else FormAnswer.number_response
        avg, count = (
            db.query(func.avg(column), func.count(column))
            .filter(FormAnswer.question_id == q.id, column.isnot(None))
            .one()
        )
        questions.append(
            {
                "question_id": q.id,
                "question_text": q.question_text,
                "question_type": q.question_type.value,
                "responses": int(count or 0),
                "average": round(float(avg), 2) if avg is not None else None,
            }
        )

    return Result.ok(
        {
            "form_id": form_id,
            "targeted": targeted,
            "submitted": submitted,
            "completed": completed,
            "submission_rate": _rate(submitted, targeted),
            "completion_rate": _rate(completed, targeted),
            "questions": questions,
        }
    )


@guarded(logger, "반 통계 조회 중 오류가 발생했습니다.")
def class_statistics(db: Session, class_id: int) -> Result:
    if db.get(ClassRoom, class_id) is None:
        return Result.fail("반을 찾을 수 없습니다.", NOT_FOUND)

    reports_total = db.query(Report).filter(Report.class_id == class_id).count()
    reports_done = (
        db.query(Report)
        .filter(
            Report.class_id == class_id,
            Report.stage == int(ReportStage.COMPLETE),
            Report.rejected_at.is_(None),
        )
        .count()
    )
    # one class average per form
    averages = [
        avg
        for (_, avg) in db.query(FormInstance.form_id, func.max(FormInstance.class_average))
        .filter(FormInstance.class_id == class_id, FormInstance.class_average.isnot(None))
        .group_by(FormInstance.form_id)
        .all()
    ]

    return Result.ok(
        {
            "class_id": class_id,
            "students": db.query(Student).filter(Student.class_id == class_id).count(),
            "reports": reports_total,
            "completed_reports": reports_done,
            "completion_rate": _rate(reports_done, reports_total),
            "average_score": round(sum(averages) / len(averages), 2) if averages else None,
        }
    )
