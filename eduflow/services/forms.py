"""Form templates data access."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from eduflow.core import rbac
from eduflow.core.redis import publish_group_change
from eduflow.db.models.form import Form, FormQuestion, QuestionType
from eduflow.db.models.group import Group
from eduflow.db.models.user import User
from eduflow.services.result import FORBIDDEN, INVALID, NOT_FOUND, Result, guarded

logger = logging.getLogger("eduflow.services.forms")

RATING_MIN_MAX = 2
RATING_MAX_MAX = 10
COPY_SUFFIX = " (복사본)"


def question_dict(q: FormQuestion) -> dict:
    return {
        "id": q.id,
        "order_index": q.order_index,
        "question_text": q.question_text,
        "question_type": q.question_type.value,
        "is_required": bool(q.is_required),
        "rating_max": q.rating_max,
        "is_score": bool(q.is_score),
    }


def form_dict(f: Form, with_questions: bool = True) -> dict:
    out = {
        "id": f.id,
        "group_id": f.group_id,
        "creator_id": f.creator_id,
        "title": f.title,
        "description": f.description or "",
        "is_sent": bool(f.is_sent),
        "sent_at": f.sent_at,
        "created_at": f.created_at,
        "updated_at": f.updated_at,
    }
    if with_questions:
        out["questions"] = [question_dict(q) for q in f.questions]
    else:
        out["question_count"] = len(f.questions)
    return out


def _validate_questions(questions: list[dict[str, Any]] | None) -> tuple[list[FormQuestion], str | None]:
    if not questions:
        return [], "질문을 하나 이상 추가해 주세요."

    built: list[FormQuestion] = []
    score_seen = False
    for idx, raw in enumerate(questions):
        n = idx + 1
        text = (raw.get("question_text") or "").strip()
        if not text:
            return [], f"{n}번 질문의 내용을 입력해 주세요."
        try:
            q_type = QuestionType(raw.get("question_type") or QuestionType.TEXT.value)
        except ValueError:
            return [], f"{n}번 질문의 유형이 올바르지 않습니다."

        rating_max = None
        if q_type == QuestionType.RATING:
            rating_max = raw.get("rating_max") or 5
            if not isinstance(rating_max, int) or not RATING_MIN_MAX <= rating_max <= RATING_MAX_MAX:
                return [], f"{n}번 질문의 최대 점수는 {RATING_MIN_MAX}~{RATING_MAX_MAX} 사이여야 합니다."

        is_score = bool(raw.get("is_score"))
        if is_score:
            if q_type == QuestionType.TEXT:
                return [], f"{n}번 질문: 점수 문항은 숫자 또는 평점 유형이어야 합니다."
            if score_seen:
                return [], "점수 문항은 하나만 지정할 수 있습니다."
            score_seen = True

        built.append(
            FormQuestion(
                order_index=idx,
                question_text=text,
                question_type=q_type,
                is_required=bool(raw.get("is_required")),
                rating_max=rating_max,
                is_score=is_score,
            )
        )
    return built, None


@guarded(logger, "평가지 생성 중 오류가 발생했습니다.")
def create_form(
    db: Session,
    actor: User,
    group_id: int,
    title: str,
    description: str = "",
    questions: list[dict[str, Any]] | None = None,
) -> Result:
    if db.get(Group, group_id) is None:
        return Result.fail("그룹을 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    title = (title or "").strip()
    if not title:
        return Result.fail("평가지 제목은 필수 항목입니다.", INVALID)
    built, error = _validate_questions(questions)
    if error:
        return Result.fail(error, INVALID)

    f = Form(group_id=group_id, creator_id=actor.id, title=title, description=(description or "").strip())
    f.questions = built
    db.add(f)
    db.commit()
    db.refresh(f)
    logger.info("form %s created in group %s", f.id, group_id)
    publish_group_change(group_id, "form", f.id)
    return Result.ok(form_dict(f))


@guarded(logger, "평가지 조회 중 오류가 발생했습니다.")
def get_form(db: Session, form_id: int) -> Result:
    f = db.get(Form, form_id)
    if f is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    out = form_dict(f)
    out["targets"] = [{"target_type": t.target_type.value, "target_id": t.target_id} for t in f.targets]
    return Result.ok(out)


@guarded(logger, "평가지 목록 조회 중 오류가 발생했습니다.")
def list_group_forms(db: Session, group_id: int, is_sent: bool | None = None) -> Result:
    q = db.query(Form).filter(Form.group_id == group_id)
    if is_sent is not None:
        q = q.filter(Form.is_sent.is_(is_sent))
    rows = q.order_by(Form.updated_at.desc(), Form.id.desc()).all()
    return Result.ok([form_dict(f, with_questions=False) for f in rows])


@guarded(logger, "평가지 수정 중 오류가 발생했습니다.")
def update_form(
    db: Session,
    form_id: int,
    actor: User,
    title: str | None = None,
    description: str | None = None,
    questions: list[dict[str, Any]] | None = None,
) -> Result:
    f = db.get(Form, form_id)
    if f is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, f.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    if title is not None:
        title = title.strip()
        if not title:
            return Result.fail("평가지 제목은 필수 항목입니다.", INVALID)
        f.title = title
    if description is not None:
        f.description = description.strip()
    if questions is not None:
        if f.is_sent:
            return Result.fail("이미 발송된 평가지의 질문은 수정할 수 없습니다.", INVALID)
        built, error = _validate_questions(questions)
        if error:
            return Result.fail(error, INVALID)
        f.questions = built

    db.commit()
    db.refresh(f)
    publish_group_change(f.group_id, "form", f.id)
    return Result.ok(form_dict(f))


@guarded(logger, "평가지 복사 중 오류가 발생했습니다.")
def duplicate_form(db: Session, form_id: int, actor: User) -> Result:
    src = db.get(Form, form_id)
    if src is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, src.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)

    copy = Form(
        group_id=src.group_id,
        creator_id=actor.id,
        title=f"{src.title}{COPY_SUFFIX}"[:200],
        description=src.description or "",
    )
    copy.questions = [
        FormQuestion(
            order_index=q.order_index,
            question_text=q.question_text,
            question_type=q.question_type,
            is_required=q.is_required,
            rating_max=q.rating_max,
            is_score=q.is_score,
        )
        for q in src.questions
    ]
    db.add(copy)
    db.commit()
    db.refresh(copy)
    publish_group_change(copy.group_id, "form", copy.id)
    return Result.ok(form_dict(copy))


@guarded(logger, "평가지 삭제 중 오류가 발생했습니다.")
def delete_form(db: Session, form_id: int, actor: User) -> Result:
    f = db.get(Form, form_id)
    if f is None:
        return Result.fail("평가지를 찾을 수 없습니다.", NOT_FOUND)
    if not rbac.can_manage_content(db, f.group_id, actor):
        return Result.fail(rbac.FORBIDDEN, FORBIDDEN)
    if f.is_sent:
        return Result.fail("이미 발송된 평가지는 삭제할 수 없습니다.", INVALID)

    group_id = f.group_id
    db.delete(f)
    db.commit()
    publish_group_change(group_id, "form", form_id)
    return Result.ok()
