"""Raw reports and their summarised drafts."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from eduflow.core import rbac, workflow
from eduflow.core.redis import publish_group_change
from eduflow.db.models.classroom import ClassRoom
from eduflow.db.models.form import QuestionType
from eduflow.db.models.form_instance import FormInstance
from eduflow.db.models.report import Report
from eduflow.db.models.student_report import StudentReport
from eduflow.db.models.user import User
from eduflow.services.result import FORBIDDEN, INVALID, NOT_FOUND, Result, guarded
from eduflow.utils.summarizer import GeminiClient, summarize

logger = logging.getLogger("eduflow.services.student_reports")

NO_INFO = "정보 없음"


def student_report_dict(sr: StudentReport) -> dict:
    return {
        "id": sr.id,
        "form_instance_id": sr.form_instance_id,
        "student_id": sr.student_id,
        "group_id": sr.group_id,
        "raw_report": sr.raw_report,
        "ai_report": sr.ai_report,
        "source": sr.source,
        "created_at": sr.created_at,
        "updated_at": sr.updated_at,
    }


def _format_answer(question, answer) -> str:
    if answer is None:
        return NO_INFO
    if question.question_type == QuestionType.RATING and answer.rating_response is not None:
        return f"{answer.rating_response} / {question.rating_max or 5}"
    if question.question_type == QuestionType.NUMBER and answer.number_response is not None:
        n = answer.number_response
        return str(int(n)) if float(n).is_integer() else str(n)
    return (answer.text_response or "").strip() or NO_INFO


def build_raw_report(db: Session, inst: FormInstance) -> str:
    report = db.query(Report).filter(Report.form_instance_id == inst.id).first()
    classroom = db.get(ClassRoom, inst.class_id) if inst.class_id else None
    when = inst.submitted_at or inst.created_at
    answers = {a.question_id: a for a in inst.answers}

    lines = [
        f"◆ {inst.form.title} ◆",
        f"> 반명: {classroom.name if classroom else NO_INFO}",
        f"> 이름: {inst.student.name}",
        f"> 날짜: {when.strftime('%Y. %m. %d.') if when else NO_INFO}",
        f"> 반평균: {inst.class_average if inst.class_average is not None else NO_INFO}",
        "",
        "■ 학생 응답",
    ]
    for q in inst.form.questions:
        lines.append(f"{q.order_index + 1}. {q.question_text}: {_format_answer(q, answers.get(q.id))}")

    if report is not None:
        lines += [
            "",
            f"* 시간강사 의견: {(report.time_teacher_comment or '').strip() or NO_INFO}",
            f"* 담임 의견: {(report.teacher_comment or '').strip() or NO_INFO}",
        ]
    return "\n".join(lines)


@guarded(logger, "원본 보고서 생성 중 오류가 발생했습니다.")
def generate_raw_report(db: Session, instance_id: int) -> Result:
    inst = db.get(FormInstance, instance_id)
    if inst is None:
        return Result.fail("평가지 응답을 찾을 수 없습니다.", NOT_FOUND)
    return Result.ok(build_raw_report(db, inst))


@guarded(logger, "보고서 요약 생성 중 오류가 발생했습니다.")
def generate_report_summary(db: Session, report_id: int, actor: User, client: GeminiClient | None = None) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    group_id = report.form.group_id
    if not rbac.is_staff(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    if not workflow.derive_review_state(report).is_complete:
        return Result.fail("검토가 완료된 보고서만 요약할 수 있습니다.", INVALID)

    inst = report.instance
    raw = build_raw_report(db, inst)
    summary = summarize(raw, client=client)

    sr = db.query(StudentReport).filter(StudentReport.form_instance_id == inst.id).first()
    if sr is None:
        sr = StudentReport(form_instance_id=inst.id, student_id=report.student_id, group_id=group_id)
        db.add(sr)
    sr.raw_report = raw
    sr.ai_report = summary.text
    sr.source = summary.source
    report.final_report = summary.text
    db.commit()
    db.refresh(sr)

    logger.info("summary for report %s generated (%s)", report.id, summary.source)
    publish_group_change(group_id, "report", report.id)
    return Result.ok(student_report_dict(sr))


@guarded(logger, "학생 보고서 조회 중 오류가 발생했습니다.")
def get_student_report(db: Session, student_report_id: int) -> Result:
    sr = db.get(StudentReport, student_report_id)
    if sr is None:
        return Result.fail("학생 보고서를 찾을 수 없습니다.", NOT_FOUND)
    return Result.ok(student_report_dict(sr))


@guarded(logger, "학생 보고서 조회 중 오류가 발생했습니다.")
def get_student_report_for_report(db: Session, report_id: int) -> Result:
    report = db.get(Report, report_id)
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    sr = db.query(StudentReport).filter(StudentReport.form_instance_id == report.form_instance_id).first()
    if sr is None:
        return Result.fail("아직 생성된 요약이 없습니다.", NOT_FOUND)
    return Result.ok(student_report_dict(sr))


@guarded(logger, "학생 보고서 목록 조회 중 오류가 발생했습니다.")
def list_group_student_reports(db: Session, group_id: int) -> Result:
    rows = (
        db.query(StudentReport)
        .filter(StudentReport.group_id == group_id)
        .order_by(StudentReport.updated_at.desc(), StudentReport.id.desc())
        .all()
    )
    return Result.ok([student_report_dict(sr) for sr in rows])


@guarded(logger, "학생 보고서 수정 중 오류가 발생했습니다.")
def update_student_report(db: Session, student_report_id: int, actor: User, ai_report: str) -> Result:
    sr = db.get(StudentReport, student_report_id)
    if sr is None:
        return Result.fail("학생 보고서를 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.is_staff(db, sr.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    text = (ai_report or "").strip()
    if not text:
        return Result.fail("보고서 내용을 입력해 주세요.", INVALID)

    sr.ai_report = text
    report = db.query(Report).filter(Report.form_instance_id == sr.form_instance_id).first()
    if report is not None:
        report.final_report = text
    db.commit()
    db.refresh(sr)
    publish_group_change(sr.group_id, "report", report.id if report else None)
    return Result.ok(student_report_dict(sr))
