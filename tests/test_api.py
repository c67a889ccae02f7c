from __future__ import annotations

TT_COMMENT = "수업 참여가 성실하고 과제를 꾸준히 수행했습니다."
T_COMMENT = "학기 전체적으로 성장세가 뚜렷하며 발표 능력이 좋아졌습니다."


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_requires_login(client):
    resp = client.get("/me")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "로그인이 필요합니다."


def test_signup_login_me(client):
    resp = client.post(
        "/signup",
        json={"name": "홍길동", "email": "Hong@Example.com", "username": "hong", "password": "secret123"},
    )
    assert resp.status_code == 201
    assert resp.json()["user"]["email"] == "hong@example.com"

    dup = client.post(
        "/signup",
        json={"name": "홍길동", "email": "hong@example.com", "username": "hong2", "password": "secret123"},
    )
    assert dup.status_code == 409

    client.cookies.clear()
    bad = client.post("/login", data={"username": "hong", "password": "wrong-pass1"})
    assert bad.status_code == 400

    ok = client.post("/login", data={"username": "hong@example.com", "password": "secret123"})
    assert ok.status_code == 200
    me = client.get("/me").json()
    assert me["user"]["username"] == "hong"
    assert me["groups"] == []
    assert me["badge_count"] == 0


def test_group_crud(client, make_user, login):
    owner = make_user("owner")
    api = login(owner)
    created = api.post("/groups", json={"name": "과학반"})
    assert created.status_code == 201
    gid = created.json()["id"]

    assert api.patch(f"/groups/{gid}", json={"description": "실험 중심"}).json()["description"] == "실험 중심"
    assert [g["name"] for g in api.get("/groups", params={"q": "과학"}).json()] == ["과학반"]
    assert api.delete(f"/groups/{gid}").json() == {"success": True}
    assert api.get(f"/groups/{gid}").status_code == 404


def test_non_member_gets_403(client, world, login):
    api = login(world.outsider)
    assert api.get(f"/groups/{world.group['id']}/students").status_code == 403
    assert api.get(f"/reports/{world.report_id}").status_code == 403


def test_review_flow_over_http(client, world, login):
    score_q, rating_q, text_q = world.questions

    api = login(world.student_user)
    resp = api.post(
        f"/instances/{world.instance_id}/submit",
        json={"answers": {str(score_q): 77, str(rating_q): 3, str(text_q): "재밌었어요"}},
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "student_completed"

    api = login(world.teacher)
    denied = api.post(f"/reports/{world.report_id}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"})
    assert denied.status_code == 403
    assert denied.json()["detail"] == "접근 권한이 없습니다"

    api = login(world.time_teacher)
    badge = api.get("/notifications/badge").json()["badge_count"]
    assert badge == 1
    state = api.get(f"/reports/{world.report_id}/state").json()
    assert state["comment_type"] == "time_teacher"
    ok = api.post(f"/reports/{world.report_id}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"})
    assert ok.json()["stage"] == 2
    assert api.post("/notifications/read-all").json()["updated"] == 1

    api = login(world.teacher)
    queue = api.get(f"/groups/{world.group['id']}/reports/queue").json()
    assert [r["id"] for r in queue] == [world.report_id]

    # pdf only once complete
    assert api.get(f"/reports/{world.report_id}/pdf").status_code == 400

    done = api.post(f"/reports/{world.report_id}/comment", json={"comment": T_COMMENT, "comment_type": "teacher"})
    assert done.json()["state"]["is_complete"] is True

    pdf = api.get(f"/reports/{world.report_id}/pdf")
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.headers["content-disposition"] == f'attachment; filename="report_{world.report_id}.pdf"'
    assert pdf.content.startswith(b"%PDF")

    summary = api.post(f"/reports/{world.report_id}/summary")
    assert summary.status_code == 200, summary.text
    assert api.get(f"/reports/{world.report_id}/summary").json()["id"] == summary.json()["id"]
    edited = api.patch(f"/reports/{world.report_id}/summary", json={"ai_report": "최종 의견"})
    assert edited.json()["ai_report"] == "최종 의견"

    history = api.get(f"/reports/{world.report_id}/history").json()
    assert [h["action"] for h in history] == ["submit", "time_teacher_comment", "teacher_comment"]

    stats = api.get(f"/groups/{world.group['id']}/reports/statistics").json()
    assert stats["stage_3"] == 1
    assert stats["completion_rate"] == 100


def test_reject_over_http(client, submitted, login):
    api = login(submitted.time_teacher)
    resp = api.post(f"/reports/{submitted.report_id}/reject", json={"rejection_reason": "다시 작성해 주세요."})
    assert resp.status_code == 200
    assert resp.json()["state"]["awaiting"] == "student"

    again = api.post(f"/reports/{submitted.report_id}/reject", json={"rejection_reason": "또"})
    assert again.status_code == 400

    rejected = api.get(f"/groups/{submitted.group['id']}/reports", params={"rejected": True}).json()
    assert [r["id"] for r in rejected] == [submitted.report_id]


def test_notifications_read(client, submitted, login):
    api = login(submitted.time_teacher)
    items = api.get("/notifications").json()["items"]
    assert len(items) == 1
    nid = items[0]["id"]

    other = login(submitted.teacher)
    assert other.post(f"/notifications/{nid}/read").status_code == 403

    api = login(submitted.time_teacher)
    assert api.post(f"/notifications/{nid}/read").json()["is_read"] is True
    assert api.get("/notifications", params={"unread": True}).json()["items"] == []


def test_student_report_lookup(client, world, login):
    score_q = world.questions[0]
    api = login(world.teacher)
    api.post(f"/instances/{world.instance_id}/submit", json={"answers": {str(score_q): 60}})
    api = login(world.time_teacher)
    api.post(f"/reports/{world.report_id}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"})
    api = login(world.teacher)
    api.post(f"/reports/{world.report_id}/comment", json={"comment": T_COMMENT, "comment_type": "teacher"})
    created = api.post(f"/reports/{world.report_id}/summary").json()

    assert api.get(f"/student-reports/{created['id']}").json()["form_instance_id"] == world.instance_id
    listed = api.get(f"/groups/{world.group['id']}/student-reports").json()
    assert [sr["id"] for sr in listed] == [created["id"]]

    assert login(world.outsider).get(f"/student-reports/{created['id']}").status_code == 403


def test_outsider_cannot_write_to_group_reports(client, submitted, login):
    api = login(submitted.outsider)
    rid = submitted.report_id

    comment = api.post(f"/reports/{rid}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"})
    assert comment.status_code == 403
    assert api.post(f"/reports/{rid}/reject", json={"rejection_reason": "사유"}).status_code == 403
    assert api.post(f"/reports/{rid}/summary").status_code == 403
    score_q = submitted.questions[0]
    assert api.post(f"/instances/{submitted.instance_id}/submit", json={"answers": {str(score_q): 1}}).status_code == 403

    state = login(submitted.owner).get(f"/reports/{rid}/state").json()
    assert state["stage"] == 1
    assert state["is_rejected"] is False


def test_removed_reviewer_is_locked_out(client, submitted, login):
    gid = submitted.group["id"]
    owner = login(submitted.owner)
    assert owner.delete(f"/groups/{gid}/members/{submitted.time_teacher.id}").status_code == 200

    api = login(submitted.time_teacher)
    resp = api.post(
        f"/reports/{submitted.report_id}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"}
    )
    assert resp.status_code == 403
    assert api.post(f"/reports/{submitted.report_id}/reject", json={"rejection_reason": "사유"}).status_code == 403

    state = login(submitted.owner).get(f"/reports/{submitted.report_id}/state").json()
    assert state["stage"] == 1
    assert state["is_rejected"] is False


def test_removed_member_cannot_submit_or_summarize(client, world, login):
    gid = world.group["id"]
    owner = login(world.owner)
    assert owner.delete(f"/groups/{gid}/members/{world.student_user.id}").status_code == 200

    score_q = world.questions[0]
    api = login(world.student_user)
    resp = api.post(f"/instances/{world.instance_id}/submit", json={"answers": {str(score_q): 90}})
    assert resp.status_code == 403

    # finish the review with the remaining staff, then drop the teacher
    api = login(world.teacher)
    assert api.post(f"/instances/{world.instance_id}/submit", json={"answers": {str(score_q): 90}}).status_code == 200
    login(world.time_teacher).post(
        f"/reports/{world.report_id}/comment", json={"comment": TT_COMMENT, "comment_type": "time_teacher"}
    )
    login(world.teacher).post(f"/reports/{world.report_id}/comment", json={"comment": T_COMMENT, "comment_type": "teacher"})
    assert login(world.owner).delete(f"/groups/{gid}/members/{world.teacher.id}").status_code == 200

    assert login(world.teacher).post(f"/reports/{world.report_id}/summary").status_code == 403


def test_update_profile(client, make_user, login):
    user = make_user("lee", phone=None)
    api = login(user)

    resp = api.patch("/me", json={"name": " 이선생 ", "phone": "01098765432"})
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == "이선생"
    assert resp.json()["user"]["phone"] == "010-9876-5432"
    assert resp.json()["user"]["email"] == "lee@example.com"

    assert api.patch("/me", json={"name": "  "}).status_code == 400


def test_change_password(client, make_user, login):
    user = make_user("park")
    api = login(user)

    wrong = api.post("/me/password", json={"current_password": "nope12345", "new_password": "newpass456"})
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "현재 비밀번호가 올바르지 않습니다."

    weak = api.post("/me/password", json={"current_password": "password123", "new_password": "short"})
    assert weak.status_code == 400

    ok = api.post("/me/password", json={"current_password": "password123", "new_password": "newpass456"})
    assert ok.status_code == 200
    assert ok.json()["success"] is True

    client.cookies.clear()
    assert client.post("/login", data={"username": "park", "password": "password123"}).status_code == 400
    assert client.post("/login", data={"username": "park", "password": "newpass456"}).status_code == 200
