"""Workflow / State Machine for report review.

This module centralizes *all* report review rules in one place.

A report moves 0 -> 1 -> 2 -> 3:
  0 awaiting the student's answers
  1 awaiting the time-teacher's comment
  2 awaiting the teacher's comment
  3 complete

Rejection never touches `stage`. It sets the rejection fields, which moves the
*effective* stage one step back so control returns to whoever acted last
(student for stage 1, time-teacher for stage 2). Every "who acts next"
question is answered by `derive_review_state`; routers and services must not
re-derive it from `stage` / `rejected_at` on their own.

The functions here only read and write attributes of the report object; the
caller owns the DB session and commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from eduflow.db.base import utcnow
from eduflow.db.models.form_instance import InstanceStatus
from eduflow.db.models.report import Report, ReportStage, STAGE_LABELS


Action = str  # "submit" | "time_teacher_comment" | "teacher_comment"
CommentType = Literal["time_teacher", "teacher"]
Actor = Literal["student", "time_teacher", "teacher"]


@dataclass(frozen=True, slots=True)
class Transition:
    """One forward edge in the state machine."""

    action: Action
    from_stage: ReportStage
    to_stage: ReportStage
    actor: Actor


TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        action="submit",
        from_stage=ReportStage.AWAITING_STUDENT,
        to_stage=ReportStage.AWAITING_TIME_TEACHER,
        actor="student",
    ),
    Transition(
        action="time_teacher_comment",
        from_stage=ReportStage.AWAITING_TIME_TEACHER,
        to_stage=ReportStage.AWAITING_TEACHER,
        actor="time_teacher",
    ),
    Transition(
        action="teacher_comment",
        from_stage=ReportStage.AWAITING_TEACHER,
        to_stage=ReportStage.COMPLETE,
        actor="teacher",
    ),
)

AWAITING: dict[ReportStage, Actor | None] = {
    ReportStage.AWAITING_STUDENT: "student",
    ReportStage.AWAITING_TIME_TEACHER: "time_teacher",
    ReportStage.AWAITING_TEACHER: "teacher",
    ReportStage.COMPLETE: None,
}

ACTOR_LABELS = {
    "student": "학생",
    "time_teacher": "시간강사",
    "teacher": "선생님",
}

INSTANCE_STATUS = {
    ReportStage.AWAITING_STUDENT: InstanceStatus.PENDING,
    ReportStage.AWAITING_TIME_TEACHER: InstanceStatus.STUDENT_COMPLETED,
    ReportStage.AWAITING_TEACHER: InstanceStatus.TIME_TEACHER_COMPLETED,
    ReportStage.COMPLETE: InstanceStatus.TEACHER_COMPLETED,
}

# Only these effective stages have a submission that can be sent back.
REJECTABLE_STAGES = (ReportStage.AWAITING_TIME_TEACHER, ReportStage.AWAITING_TEACHER)


@dataclass(frozen=True, slots=True)
class ReviewState:
    stage: int
    effective_stage: int
    awaiting: Actor | None
    awaiting_user_id: int | None
    status: str  # waiting_student | waiting_time_teacher | waiting_teacher | completed | rejected
    is_rejected: bool
    is_complete: bool
    next_action: str

    def as_dict(self) -> dict:
        return {
            "stage": self.stage,
            "effective_stage": self.effective_stage,
            "awaiting": self.awaiting,
            "awaiting_user_id": self.awaiting_user_id,
            "status": self.status,
            "is_rejected": self.is_rejected,
            "is_complete": self.is_complete,
            "next_action": self.next_action,
        }


def _stage(report: Report) -> ReportStage:
    return ReportStage(int(report.stage or 0))


def effective_stage(report: Report) -> ReportStage:
    stage = _stage(report)
    if report.rejected_at is not None and stage > ReportStage.AWAITING_STUDENT:
        return ReportStage(stage - 1)
    return stage


def _actor_user_id(report: Report, actor: Actor | None) -> int | None:
    if actor == "time_teacher":
        return report.time_teacher_id
    if actor == "teacher":
        return report.teacher_id
    if actor == "student":
        student = getattr(report, "student", None)
        return getattr(student, "user_id", None)
    return None


def derive_review_state(report: Report) -> ReviewState:
    """Single source of truth for "where is this report and who acts next"."""
    stage = _stage(report)
    eff = effective_stage(report)
    is_rejected = report.rejected_at is not None and stage > ReportStage.AWAITING_STUDENT
    awaiting = AWAITING[eff]
    is_complete = eff == ReportStage.COMPLETE

    if is_rejected:
        status = "rejected"
        next_action = f"반려됨 - {ACTOR_LABELS[awaiting]} 재작성 대기"
    elif is_complete:
        status = "completed"
        next_action = STAGE_LABELS[eff]
    else:
        status = f"waiting_{awaiting}"
        next_action = STAGE_LABELS[eff]

    return ReviewState(
        stage=int(stage),
        effective_stage=int(eff),
        awaiting=awaiting,
        awaiting_user_id=_actor_user_id(report, awaiting),
        status=status,
        is_rejected=is_rejected,
        is_complete=is_complete,
        next_action=next_action,
    )


def comment_type_for(report: Report, user_id: int | None) -> CommentType | None:
    """Which comment (if any) this user may write right now."""
    if user_id is None:
        return None
    state = derive_review_state(report)
    if state.awaiting == "time_teacher" and report.time_teacher_id == user_id:
        return "time_teacher"
    if state.awaiting == "teacher" and report.teacher_id == user_id:
        return "teacher"
    return None


def has_permission(report: Report, user_id: int | None) -> bool:
    return comment_type_for(report, user_id) is not None


def get_transition(action: Action, from_stage: ReportStage) -> Transition:
    for t in TRANSITIONS:
        if t.action == action and t.from_stage == from_stage:
            return t
    raise KeyError("unknown transition")


def can_reject(report: Report) -> bool:
    state = derive_review_state(report)
    return not state.is_rejected and ReportStage(state.effective_stage) in REJECTABLE_STAGES


def can_reset(report: Report) -> bool:
    return _stage(report) != ReportStage.AWAITING_STUDENT or report.rejected_at is not None


def _clear_rejection(report: Report) -> None:
    report.rejected_at = None
    report.rejected_by = None
    report.rejection_reason = None


def apply_submission(report: Report) -> Transition:
    """Student answers arrived (first time, or again after a rejection)."""
    t = get_transition("submit", effective_stage(report))
    report.stage = int(t.to_stage)
    _clear_rejection(report)
    return t


def apply_comment(
    report: Report,
    comment_type: CommentType,
    comment: str,
    now: datetime | None = None,
) -> Transition:
    """Write the reviewer comment and move one stage forward.

    Permission is checked by the caller with `comment_type_for`.
    """
    now = now or utcnow()
    t = get_transition(f"{comment_type}_comment", effective_stage(report))
    if comment_type == "time_teacher":
        report.time_teacher_comment = comment
        report.time_teacher_completed_at = now
    else:
        report.teacher_comment = comment
        report.teacher_completed_at = now
    report.stage = int(t.to_stage)
    _clear_rejection(report)
    return t


def apply_rejection(report: Report, rejected_by: int, reason: str, now: datetime | None = None) -> None:
    report.rejected_at = now or utcnow()
    report.rejected_by = rejected_by
    report.rejection_reason = reason


def apply_reset(report: Report) -> None:
    report.stage = int(ReportStage.AWAITING_STUDENT)
    report.time_teacher_comment = None
    report.time_teacher_completed_at = None
    report.teacher_comment = None
    report.teacher_completed_at = None
    report.final_report = None
    _clear_rejection(report)


def instance_status_for(report: Report) -> InstanceStatus:
    return INSTANCE_STATUS[effective_stage(report)]
