"""Form instances data access: sending forms, answers, class averages."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from eduflow.core import rbac, workflow
from eduflow.core.redis import publish_group_change
from eduflow.db.base import utcnow
from eduflow.db.models.classroom import ClassMember, ClassRole, ClassRoom
from eduflow.db.models.form import Form, FormQuestion, FormTarget, QuestionType, TargetType
from eduflow.db.models.form_instance import FormAnswer, FormInstance
from eduflow.db.models.report import Report, ReportStage
from eduflow.db.models.student import Student
from eduflow.db.models.user import User
from eduflow.services.reports import record_transition
from eduflow.services.result import FORBIDDEN, INVALID, NOT_FOUND, Result, guarded
from eduflow.utils.notify import notify

logger = logging.getLogger("eduflow.services.form_instances")


def answer_dict(a: FormAnswer) -> dict:
    return {
        "question_id": a.question_id,
        "text_response": a.text_response,
        "number_response": a.number_response,
        "rating_response": a.rating_response,
    }


def instance_dict(inst: FormInstance, with_answers: bool = False) -> dict:
    out = {
        "id": inst.id,
        "form_id": inst.form_id,
        "form_title": inst.form.title if inst.form else None,
        "student_id": inst.student_id,
        "student_name": inst.student.name if inst.student else None,
        "class_id": inst.class_id,
        "status": inst.status.value,
        "submitted_at": inst.submitted_at,
        "class_average": inst.class_average,
        "created_at": inst.created_at,
        "updated_at": inst.updated_at,
    }
    if with_answers:
        out["answers"] = [answer_dict(a) for a in sorted(inst.answers, key=lambda a: a.question_id)]
    return out


def _first_member(db: Session, class_id: int | None, role: ClassRole) -> int | None:
    if class_id is None:
        return None
    m = (
        db.query(ClassMember)
        .filter(ClassMember.class_id == class_id, ClassMember.role == role)
        .order_by(ClassMember.assigned_at.asc(), ClassMember.id.asc())
        .first()
    )
    return m.user_id if m else None


def default_reviewers(db: Session, form: Form, class_id: int | None) -> tuple[int | None, int]:
    """(time_teacher_id, teacher_id) for a new report.

    The teacher falls back to the form creator, the time-teacher to the teacher.
    """
    teacher_id = _first_member(db, class_id, ClassRole.TEACHER) or form.creator_id
    time_teacher_id = _first_member(db, class_id, ClassRole.TIME_TEACHER) or teacher_id
    return time_teacher_id, teacher_id


@guarded(logger, "평가지 발송 중 오류가 발생했습니다.")
def send_form(
    db: Session,
    form_id: int,
    actor: User,
    class_ids: list[int] | None = None,
    student_ids: list[int] | None = None,
) -> Result:
    form = db.get(Form, form_id)
    if form is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, form.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    class_ids = sorted(set(class_ids or []))
    student_ids = sorted(set(student_ids or []))
    if not class_ids and not student_ids:
        return Result.fail("발송 대상을 선택해 주세요.", INVALID)
    if not form.questions:
        return Result.fail("질문이 없는 평가지는 발송할 수 없습니다.", INVALID)

    classes = db.query(ClassRoom).filter(ClassRoom.id.in_(class_ids)).all() if class_ids else []
    if len(classes) != len(class_ids) or any(c.group_id != form.group_id for c in classes):
        return Result.fail("그룹에 속하지 않은 반이 포함되어 있습니다.", INVALID)
    picked = db.query(Student).filter(Student.id.in_(student_ids)).all() if student_ids else []
    if len(picked) != len(student_ids) or any(s.group_id != form.group_id for s in picked):
        return Result.fail("그룹에 속하지 않은 학생이 포함되어 있습니다.", INVALID)

    existing_targets = {(t.target_type, t.target_id) for t in form.targets}
    for tt, ids in ((TargetType.CLASS, class_ids), (TargetType.STUDENT, student_ids)):
        for tid in ids:
            if (tt, tid) not in existing_targets:
                form.targets.append(FormTarget(target_type=tt, target_id=tid))

    students: dict[int, Student] = {s.id: s for s in picked}
    if class_ids:
        for s in db.query(Student).filter(Student.class_id.in_(class_ids)).all():
            students.setdefault(s.id, s)

    already = {
        sid
        for (sid,) in db.query(FormInstance.student_id).filter(FormInstance.form_id == form.id).all()
    }

    created: list[int] = []
    for s in sorted(students.values(), key=lambda s: s.id):
        if s.id in already:
            continue
        inst = FormInstance(form_id=form.id, student_id=s.id, class_id=s.class_id)
        db.add(inst)
        db.flush()
        time_teacher_id, teacher_id = default_reviewers(db, form, s.class_id)
        db.add(
            Report(
                form_id=form.id,
                form_instance_id=inst.id,
                student_id=s.id,
                class_id=s.class_id,
                stage=int(ReportStage.AWAITING_STUDENT),
                time_teacher_id=time_teacher_id,
                teacher_id=teacher_id,
            )
        )
        notify(db, s.user_id, f"[{form.title}] 새 평가지가 도착했습니다.", None, "form")
        created.append(inst.id)

    if not form.is_sent:
        form.is_sent = True
        form.sent_at = utcnow()
    db.commit()

    logger.info("form %s sent: %s new instances, %s already present", form.id, len(created), len(students) - len(created))
    publish_group_change(form.group_id, "form", form.id)
    return Result.ok(
        {
            "form_id": form.id,
            "created": len(created),
            "skipped": len(students) - len(created),
            "instance_ids": created,
        }
    )


@guarded(logger, "평가지 응답 조회 중 오류가 발생했습니다.")
def get_form_instance(db: Session, instance_id: int) -> Result:
    inst = db.get(FormInstance, instance_id)
    if inst is None:
        return Result.fail("평가지 응답을 찾을 수 없습니다.", NOT_FOUND)
    out = instance_dict(inst, with_answers=True)
    out["group_id"] = inst.form.group_id if inst.form else None
    out["questions"] = [
        {
            "id": q.id,
            "question_text": q.question_text,
            "question_type": q.question_type.value,
            "is_required": bool(q.is_required),
            "rating_max": q.rating_max,
            "is_score": bool(q.is_score),
        }
        for q in (inst.form.questions if inst.form else [])
    ]
    report = db.query(Report).filter(Report.form_instance_id == inst.id).first()
    out["report_id"] = report.id if report else None
    return Result.ok(out)


@guarded(logger, "평가지 응답 목록 조회 중 오류가 발생했습니다.")
def list_student_instances(db: Session, student_id: int) -> Result:
    if db.get(Student, student_id) is None:
        return Result.fail("학생을 찾을 수 없습니다.", NOT_FOUND)
    rows = (
        db.query(FormInstance)
        .filter(FormInstance.student_id == student_id)
        .order_by(FormInstance.created_at.desc(), FormInstance.id.desc())
        .all()
    )
    return Result.ok([instance_dict(i) for i in rows])


@guarded(logger, "평가지 응답 목록 조회 중 오류가 발생했습니다.")
def list_form_instances(db: Session, form_id: int) -> Result:
    if db.get(Form, form_id) is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    rows = db.query(FormInstance).filter(FormInstance.form_id == form_id).order_by(FormInstance.id.asc()).all()
    return Result.ok([instance_dict(i) for i in rows])


def _coerce_answer(q: FormQuestion, value: Any) -> tuple[FormAnswer | None, str | None]:
    """One answer row for question `q`, or (None, None) when left blank."""
    n = q.order_index + 1
    blank = value is None or (isinstance(value, str) and not value.strip())
    if blank:
        if q.is_required:
            return None, f"{n}번 질문은 필수 항목입니다."
        return None, None

    if q.question_type == QuestionType.TEXT:
        return FormAnswer(question_id=q.id, text_response=str(value).strip()), None

    if isinstance(value, bool):
        return None, f"{n}번 질문에는 숫자를 입력해 주세요."
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None, f"{n}번 질문에는 숫자를 입력해 주세요."

    if q.question_type == QuestionType.NUMBER:
        return FormAnswer(question_id=q.id, number_response=number), None

    rating_max = q.rating_max or 5
    if not number.is_integer() or not 1 <= number <= rating_max:
        return None, f"{n}번 질문의 점수는 1~{rating_max} 사이의 정수여야 합니다."
    return FormAnswer(question_id=q.id, rating_response=int(number)), None


def _can_answer(db: Session, inst: FormInstance, actor: User) -> bool:
    if inst.student is not None and inst.student.user_id == actor.id:
        return True
    return rbac.is_staff(db, inst.form.group_id, actor)


@guarded(logger, "응답 제출 중 오류가 발생했습니다.")
def submit_form_response(db: Session, instance_id: int, actor: User, answers: dict[int, Any]) -> Result:
    """Store the student's answers and hand the report to the time-teacher.

    `answers` maps question id to the raw value. Previous answers are replaced.
    Allowed while the report waits for the student (first submission, or a
    stage-1 rejection sent back for rewriting).
    """
    inst = db.get(FormInstance, instance_id)
    if inst is None:
        return Result.fail("평가지 응답을 찾을 수 없습니다.", NOT_FOUND)
    if not _can_answer(db, inst, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    report = db.query(Report).filter(Report.form_instance_id == inst.id).first()
    if report is None:
        return Result.fail("보고서를 찾을 수 없습니다.", NOT_FOUND)
    if workflow.effective_stage(report) != ReportStage.AWAITING_STUDENT:
        return Result.fail("이미 제출된 응답입니다.", INVALID)

    by_id = {int(k): v for k, v in (answers or {}).items()}
    questions = inst.form.questions
    unknown = set(by_id) - {q.id for q in questions}
    if unknown:
        return Result.fail("평가지에 없는 질문이 포함되어 있습니다.", INVALID)

    rows: list[FormAnswer] = []
    for q in questions:
        row, error = _coerce_answer(q, by_id.get(q.id))
        if error:
            return Result.fail(error, INVALID)
        if row is not None:
            rows.append(row)

    inst.answers = rows
    inst.submitted_at = utcnow()

    was_rejected = report.rejected_at is not None
    t = workflow.apply_submission(report)
    record_transition(db, report, actor.id, "resubmit" if was_rejected else t.action, t.from_stage, t.to_stage)
    notify(
        db,
        report.time_teacher_id,
        f"[{inst.form.title}] {inst.student.name} 학생의 응답이 제출되었습니다.",
        report.id,
        "review",
    )
    db.flush()

    _recalculate_class_average(db, inst.form_id, inst.class_id)
    db.commit()
    db.refresh(inst)

    logger.info("instance %s submitted by user %s", inst.id, actor.id)
    publish_group_change(inst.form.group_id, "report", report.id)
    return Result.ok(instance_dict(inst, with_answers=True))


def _score(inst: FormInstance, score_question_id: int) -> float | None:
    for a in inst.answers:
        if a.question_id != score_question_id:
            continue
        if a.rating_response is not None:
            return float(a.rating_response)
        if a.number_response is not None:
            return float(a.number_response)
    return None


def _recalculate_class_average(db: Session, form_id: int, class_id: int | None) -> float | None:
    """Mean score over submitted instances of one form in one class. Caller commits."""
    if class_id is None:
        return None
    score_q = (
        db.query(FormQuestion)
        .filter(FormQuestion.form_id == form_id, FormQuestion.is_score.is_(True))
        .first()
    )
    if score_q is None:
        return None

    siblings = (
        db.query(FormInstance)
        .filter(
            FormInstance.form_id == form_id,
            FormInstance.class_id == class_id,
            FormInstance.submitted_at.isnot(None),
        )
        .all()
    )
    scores = [s for s in (_score(i, score_q.id) for i in siblings) if s is not None]
    avg = round(sum(scores) / len(scores), 2) if scores else None
    for i in siblings:
        i.class_average = avg
    return avg


@guarded(logger, "반 평균 계산 중 오류가 발생했습니다.")
def calculate_class_average(db: Session, instance_id: int) -> Result:
    inst = db.get(FormInstance, instance_id)
    if inst is None:
        return Result.fail("평가지 응답을 찾을 수 없습니다.", NOT_FOUND)
    avg = _recalculate_class_average(db, inst.form_id, inst.class_id)
    db.commit()
    return Result.ok({"form_id": inst.form_id, "class_id": inst.class_id, "class_average": avg})
