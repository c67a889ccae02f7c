from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session

from eduflow.auth.deps import SESSION_COOKIE, get_current_user
from eduflow.core.config import settings
from eduflow.core.rbac import require
from eduflow.core.security import hash_password, password_needs_rehash, session_token, verify_password
from eduflow.db.models.user import User
from eduflow.db.session import get_db
from eduflow.schema.auth import PasswordChangeRequest, ProfileUpdateRequest, SignupRequest
from eduflow.services import groups as groups_svc
from eduflow.services.result import unwrap
from eduflow.utils.badges import get_badge_count
from eduflow.utils.validation import format_phone, is_valid_email, password_error

logger = logging.getLogger("eduflow.auth")

router = APIRouter(tags=["auth"])


def user_dict(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "username": u.username,
        "phone": u.phone,
        "is_admin": bool(u.is_admin),
        "created_at": u.created_at.isoformat() if u.created_at else None,
    }


def _with_session(payload: dict, user: User, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(payload, status_code=status_code)
    resp.set_cookie(
        SESSION_COOKIE,
        session_token(user.id),
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
    )
    return resp


@router.post("/login")
def login(
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    login_id = username.strip()
    user = (
        db.query(User)
        .filter(or_(User.username == login_id, User.email == login_id.lower()))
        .first()
    )
    require(
        user is not None and verify_password(password, user.password_hash),
        "아이디 또는 비밀번호가 올바르지 않습니다.",
        400,
    )
    require(user.is_active, "비활성화된 계정입니다.", 403)
    if password_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        db.commit()
    return _with_session({"user": user_dict(user)}, user)


@router.post("/logout")
def logout():
    resp = JSONResponse({"success": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.post("/signup", status_code=201)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    name = payload.name.strip()
    email = payload.email.strip().lower()
    username = payload.username.strip()

    require(bool(name), "이름을 입력해 주세요.", 400)
    require(is_valid_email(email), "이메일 형식이 올바르지 않습니다.", 400)
    require(bool(username), "아이디를 입력해 주세요.", 400)
    err = password_error(payload.password)
    require(err is None, err or "", 400)

    taken = db.query(User).filter(or_(User.username == username, User.email == email)).first()
    require(taken is None, "이미 사용 중인 아이디 또는 이메일입니다.", 409)

    user = User(
        name=name,
        email=email,
        username=username,
        password_hash=hash_password(payload.password),
        phone=format_phone(payload.phone),
        is_admin=False,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _with_session({"user": user_dict(user)}, user, status_code=201)


@router.get("/me")
def me(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {
        "user": user_dict(user),
        "groups": unwrap(groups_svc.list_user_groups(db, user)),
        "badge_count": get_badge_count(db, user),
    }


@router.patch("/me")
def update_profile(payload: ProfileUpdateRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if payload.name is not None:
        name = payload.name.strip()
        require(bool(name), "이름을 입력해 주세요.", 400)
        user.name = name
    if payload.phone is not None:
        user.phone = format_phone(payload.phone)
    db.commit()
    db.refresh(user)
    return {"user": user_dict(user)}


@router.post("/me/password")
def change_password(payload: PasswordChangeRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require(verify_password(payload.current_password, user.password_hash), "현재 비밀번호가 올바르지 않습니다.", 400)
    err = password_error(payload.new_password)
    require(err is None, err or "", 400)
    require(payload.new_password != payload.current_password, "새 비밀번호가 현재 비밀번호와 같습니다.", 400)

    user.password_hash = hash_password(payload.new_password)
    db.commit()
    logger.info("password changed for user %s", user.id)
    return _with_session({"success": True, "message": "비밀번호가 변경되었습니다."}, user)
