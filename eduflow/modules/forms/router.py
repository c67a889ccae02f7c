from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require, require_member
from eduflow.db.models.form import Form
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.form import FormCreateRequest, FormSendRequest, FormUpdateRequest
from eduflow.services import form_instances as instances_svc
from eduflow.services import forms as svc
from eduflow.services import statistics as stats_svc
from eduflow.services.result import unwrap

router = APIRouter(tags=["forms"])


def _form_group(db: Session, form_id: int, user: User) -> int:
    f = db.get(Form, form_id)
    require(f is not None, "평가지를 찾을 수 없습니다.", 404)
    require_member(db, f.group_id, user)
    return f.group_id


def _questions(items) -> list[dict] | None:
    if items is None:
        return None
    return [q.model_dump() for q in items]


@router.get("/groups/{group_id}/forms")
def list_forms(
    group_id: int,
    is_sent: bool | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_member(db, group_id, user)
    return unwrap(svc.list_group_forms(db, group_id, is_sent))


@router.post("/groups/{group_id}/forms", status_code=201)
def create_form(
    group_id: int,
    payload: FormCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(
        svc.create_form(db, user, group_id, payload.title, payload.description, _questions(payload.questions))
    )


@router.get("/forms/{form_id}")
def form_detail(form_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _form_group(db, form_id, user)
    return unwrap(svc.get_form(db, form_id))


@router.patch("/forms/{form_id}")
def update_form(
    form_id: int,
    payload: FormUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(
        svc.update_form(db, form_id, user, payload.title, payload.description, _questions(payload.questions))
    )


@router.delete("/forms/{form_id}")
def delete_form(form_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    unwrap(svc.delete_form(db, form_id, user))
    return {"success": True}


@router.post("/forms/{form_id}/duplicate", status_code=201)
def duplicate_form(form_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return unwrap(svc.duplicate_form(db, form_id, user))


@router.post("/forms/{form_id}/send")
def send_form(
    form_id: int,
    payload: FormSendRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return unwrap(instances_svc.send_form(db, form_id, user, payload.class_ids, payload.student_ids))


@router.get("/forms/{form_id}/instances")
def form_instances(form_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _form_group(db, form_id, user)
    return unwrap(instances_svc.list_form_instances(db, form_id))


@router.get("/forms/{form_id}/statistics")
def form_statistics(form_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _form_group(db, form_id, user)
    return unwrap(stats_svc.form_statistics(db, form_id))
