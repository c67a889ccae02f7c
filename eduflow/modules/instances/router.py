from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from eduflow.auth.deps import get_current_user
from eduflow.core.rbac import require, require_member
from eduflow.db.models.form_instance import FormInstance
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.form import SubmitAnswersRequest
from eduflow.services import form_instances as svc
from eduflow.services import student_reports as student_reports_svc
from eduflow.services.result import unwrap

router = APIRouter(prefix="/instances", tags=["instances"])


def _instance_group(db: Session, instance_id: int, user: User) -> int:
    inst = db.get(FormInstance, instance_id)
    require(inst is not None, "평가지 응답을 찾을 수 없습니다.", 404)
    require_member(db, inst.form.group_id, user)
    return inst.form.group_id


@router.get("/{instance_id}")
def instance_detail(instance_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _instance_group(db, instance_id, user)
    return unwrap(svc.get_form_instance(db, instance_id))


@router.post("/{instance_id}/submit")
def submit(
    instance_id: int,
    payload: SubmitAnswersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _instance_group(db, instance_id, user)
    return unwrap(svc.submit_form_response(db, instance_id, user, payload.answers))


@router.post("/{instance_id}/class-average")
def recalculate_class_average(instance_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _instance_group(db, instance_id, user)
    return unwrap(svc.calculate_class_average(db, instance_id))


@router.get("/{instance_id}/raw-report")
def raw_report(instance_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _instance_group(db, instance_id, user)
    return {"raw_report": unwrap(student_reports_svc.generate_raw_report(db, instance_id))}
