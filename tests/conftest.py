from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eduflow.core import redis as redis_mod
from eduflow.core.config import settings
from eduflow.core.security import hash_password, session_token
from eduflow.db.base import Base
from eduflow.db.models.classroom import ClassRole
from eduflow.db.models.group import GroupRole
from eduflow.db.models.user import User
from eduflow.services import classes as classes_svc
from eduflow.services import form_instances as instances_svc
from eduflow.services import forms as forms_svc
from eduflow.services import groups as groups_svc
from eduflow.services import students as students_svc

import eduflow.db.models  # noqa: F401

PASSWORD = "password123"
_PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_URL", "")
    monkeypatch.setattr(settings, "GEMINI_API_KEY", "")
    monkeypatch.setattr(redis_mod, "_client", None)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make(username: str, **kw) -> User:
        u = User(
            name=kw.pop("name", username.title()),
            email=kw.pop("email", f"{username}@example.com"),
            username=username,
            password_hash=_PASSWORD_HASH,
            **kw,
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u

    return _make


class World:
    """One group with a class, its reviewers, a student and a sent form."""


@pytest.fixture
def world(db, make_user):
    w = World()
    w.owner = make_user("owner")
    w.time_teacher = make_user("tt")
    w.teacher = make_user("teacher")
    w.student_user = make_user("kim")
    w.outsider = make_user("outsider")

    w.group = groups_svc.create_group(db, w.owner, "3학년").data
    gid = w.group["id"]
    groups_svc.add_group_member(db, gid, w.owner, GroupRole.TIME_TEACHER.value, user_id=w.time_teacher.id)
    groups_svc.add_group_member(db, gid, w.owner, GroupRole.TEACHER.value, user_id=w.teacher.id)
    groups_svc.add_group_member(db, gid, w.owner, GroupRole.STUDENT.value, user_id=w.student_user.id)

    w.classroom = classes_svc.create_class(db, gid, w.owner, "1반").data
    cid = w.classroom["id"]
    classes_svc.add_class_member(db, cid, w.owner, w.teacher.id, ClassRole.TEACHER.value)
    classes_svc.add_class_member(db, cid, w.owner, w.time_teacher.id, ClassRole.TIME_TEACHER.value)

    w.student = students_svc.create_student(
        db, w.owner, gid, name="김학생", class_id=cid, user_id=w.student_user.id, phone="01012345678"
    ).data
    w.form = forms_svc.create_form(
        db,
        w.owner,
        gid,
        "중간 평가",
        questions=[
            {"question_text": "점수", "question_type": "number", "is_required": True, "is_score": True},
            {"question_text": "수업 태도", "question_type": "rating", "rating_max": 5},
            {"question_text": "소감", "question_type": "text"},
        ],
    ).data
    sent = instances_svc.send_form(db, w.form["id"], w.owner, class_ids=[cid]).data
    w.instance_id = sent["instance_ids"][0]
    w.report_id = instances_svc.get_form_instance(db, w.instance_id).data["report_id"]
    w.questions = [q["id"] for q in w.form["questions"]]
    return w


@pytest.fixture
def submitted(db, world):
    score_q, rating_q, text_q = world.questions
    res = instances_svc.submit_form_response(
        db,
        world.instance_id,
        world.student_user,
        {score_q: 85, rating_q: 4, text_q: "열심히 했습니다."},
    )
    assert res.success, res.error
    return world


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from eduflow.db.session import get_db
    from eduflow.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    def _login(user: User):
        client.cookies.set("sid", session_token(user.id))
        return client

    return _login
