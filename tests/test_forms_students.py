from __future__ import annotations

import pytest

from eduflow.db.models.form_instance import FormInstance
from eduflow.db.models.notification import Notification
from eduflow.db.models.report import Report
from eduflow.db.models.student import Student
from eduflow.services import form_instances as instances_svc
from eduflow.services import forms as forms_svc
from eduflow.services import statistics as stats_svc
from eduflow.services import students as students_svc
from eduflow.services.result import FORBIDDEN, INVALID


class TestStudents:
    def test_phone_is_normalised(self, db, world):
        res = students_svc.create_student(db, world.owner, world.group["id"], name="이학생", parent_phone="010 9876 5432")
        assert res.success, res.error
        assert res.data["parent_phone"] == "010-9876-5432"

    def test_invalid_phone(self, db, world):
        res = students_svc.create_student(db, world.owner, world.group["id"], name="이학생", phone="12345")
        assert res.code == INVALID

    def test_name_required(self, db, world):
        assert students_svc.create_student(db, world.owner, world.group["id"], name=" ").code == INVALID

    def test_batch_is_all_or_nothing(self, db, world):
        gid = world.group["id"]
        rows = [{"name": "가"}, {"name": "나", "phone": "999"}, {"name": "다"}]
        res = students_svc.create_students_batch(db, world.owner, gid, rows)
        assert res.code == INVALID
        assert res.error.startswith("2번째 행")
        assert db.query(Student).filter(Student.group_id == gid).count() == 1

        res = students_svc.create_students_batch(db, world.owner, gid, [{"name": "가"}, {"name": "나"}])
        assert [s["name"] for s in res.data] == ["가", "나"]

    def test_only_content_managers_edit(self, db, world):
        res = students_svc.update_student(db, world.student["id"], world.time_teacher, name="바뀜")
        assert res.code == FORBIDDEN
        res = students_svc.update_student(db, world.student["id"], world.teacher, name="바뀜")
        assert res.data["name"] == "바뀜"

    def test_search(self, db, world):
        students_svc.create_student(db, world.owner, world.group["id"], name="박민수")
        found = students_svc.list_group_students(db, world.group["id"], "민수").data
        assert [s["name"] for s in found] == ["박민수"]

    def test_delete_before_submission_cleans_up(self, db, world):
        assert students_svc.delete_student(db, world.student["id"], world.owner).success
        assert db.query(FormInstance).count() == 0
        assert db.query(Report).count() == 0

    def test_delete_blocked_once_submitted(self, db, submitted):
        assert students_svc.delete_student(db, submitted.student["id"], submitted.owner).code == INVALID


class TestForms:
    def test_question_validation(self, db, world):
        gid = world.group["id"]
        assert forms_svc.create_form(db, world.owner, gid, "빈 평가지", questions=[]).code == INVALID

        bad_rating = [{"question_text": "평점", "question_type": "rating", "rating_max": 11}]
        assert forms_svc.create_form(db, world.owner, gid, "x", questions=bad_rating).code == INVALID

        two_scores = [
            {"question_text": "a", "question_type": "number", "is_score": True},
            {"question_text": "b", "question_type": "rating", "is_score": True},
        ]
        res = forms_svc.create_form(db, world.owner, gid, "x", questions=two_scores)
        assert res.error == "점수 문항은 하나만 지정할 수 있습니다."

        text_score = [{"question_text": "a", "question_type": "text", "is_score": True}]
        assert forms_svc.create_form(db, world.owner, gid, "x", questions=text_score).code == INVALID

    def test_rating_defaults_to_five(self, db, world):
        res = forms_svc.create_form(
            db, world.owner, world.group["id"], "평점", questions=[{"question_text": "만족도", "question_type": "rating"}]
        )
        assert res.data["questions"][0]["rating_max"] == 5

    def test_sent_form_is_locked(self, db, world):
        fid = world.form["id"]
        res = forms_svc.update_form(db, fid, world.owner, questions=[{"question_text": "새 질문"}])
        assert res.code == INVALID
        assert forms_svc.update_form(db, fid, world.owner, title="새 제목").data["title"] == "새 제목"
        assert forms_svc.delete_form(db, fid, world.owner).code == INVALID

    def test_duplicate(self, db, world):
        res = forms_svc.duplicate_form(db, world.form["id"], world.teacher)
        assert res.success, res.error
        assert res.data["title"] == "중간 평가 (복사본)"
        assert res.data["is_sent"] is False
        assert res.data["creator_id"] == world.teacher.id
        assert [q["question_text"] for q in res.data["questions"]] == ["점수", "수업 태도", "소감"]
        assert forms_svc.delete_form(db, res.data["id"], world.owner).success


class TestSendForm:
    def test_send_is_idempotent(self, db, world):
        again = instances_svc.send_form(db, world.form["id"], world.owner, class_ids=[world.classroom["id"]])
        assert again.data["created"] == 0
        assert again.data["skipped"] == 1
        assert db.query(FormInstance).count() == 1
        assert db.query(Report).count() == 1

    def test_student_user_notified(self, db, world):
        notes = db.query(Notification).filter(Notification.user_id == world.student_user.id).all()
        assert len(notes) == 1
        assert notes[0].type == "form"

    def test_reviewer_fallback_to_creator(self, db, world):
        gid = world.group["id"]
        loose = students_svc.create_student(db, world.owner, gid, name="무소속").data
        res = instances_svc.send_form(db, world.form["id"], world.owner, student_ids=[loose["id"]])
        report = db.query(Report).filter(Report.student_id == loose["id"]).one()
        assert res.data["created"] == 1
        assert report.teacher_id == world.owner.id
        assert report.time_teacher_id == world.owner.id

    def test_targets_must_belong_to_group(self, db, world, make_user):
        from eduflow.services import groups as groups_svc

        other = groups_svc.create_group(db, world.outsider, "다른 그룹").data
        stranger = students_svc.create_student(db, world.outsider, other["id"], name="외부").data
        res = instances_svc.send_form(db, world.form["id"], world.owner, student_ids=[stranger["id"]])
        assert res.code == INVALID
        assert instances_svc.send_form(db, world.form["id"], world.owner).code == INVALID

    def test_time_teacher_cannot_send(self, db, world):
        res = instances_svc.send_form(db, world.form["id"], world.time_teacher, class_ids=[world.classroom["id"]])
        assert res.code == FORBIDDEN


class TestSubmission:
    def test_required_and_type_checks(self, db, world):
        score_q, rating_q, _ = world.questions
        res = instances_svc.submit_form_response(db, world.instance_id, world.student_user, {rating_q: 3})
        assert res.error == "1번 질문은 필수 항목입니다."

        res = instances_svc.submit_form_response(db, world.instance_id, world.student_user, {score_q: "abc"})
        assert res.code == INVALID

        res = instances_svc.submit_form_response(db, world.instance_id, world.student_user, {score_q: 10, rating_q: 6})
        assert res.code == INVALID

        res = instances_svc.submit_form_response(db, world.instance_id, world.student_user, {score_q: 10, 9999: "x"})
        assert res.code == INVALID
        assert db.get(Report, world.report_id).stage == 0

    def test_outsider_cannot_submit(self, db, world):
        score_q = world.questions[0]
        res = instances_svc.submit_form_response(db, world.instance_id, world.outsider, {score_q: 10})
        assert res.code == FORBIDDEN

    def test_staff_may_answer_for_student(self, db, world):
        score_q = world.questions[0]
        res = instances_svc.submit_form_response(db, world.instance_id, world.teacher, {score_q: 70})
        assert res.success, res.error

    def test_second_submission_blocked(self, db, submitted):
        score_q = submitted.questions[0]
        res = instances_svc.submit_form_response(db, submitted.instance_id, submitted.student_user, {score_q: 1})
        assert res.error == "이미 제출된 응답입니다."

    def test_time_teacher_notified(self, db, submitted):
        note = db.query(Notification).filter(Notification.user_id == submitted.time_teacher.id).one()
        assert note.report_id == submitted.report_id


def test_class_average_over_submitted_instances(db, world):
    gid, cid = world.group["id"], world.classroom["id"]
    score_q = world.questions[0]
    second = students_svc.create_student(db, world.owner, gid, name="최학생", class_id=cid).data
    third = students_svc.create_student(db, world.owner, gid, name="정학생", class_id=cid).data
    instances_svc.send_form(db, world.form["id"], world.owner, class_ids=[cid])

    by_student = {i.student_id: i.id for i in db.query(FormInstance).all()}
    instances_svc.submit_form_response(db, by_student[world.student["id"]], world.owner, {score_q: 80})
    instances_svc.submit_form_response(db, by_student[second["id"]], world.owner, {score_q: 91})

    res = instances_svc.calculate_class_average(db, by_student[third["id"]])
    assert res.data["class_average"] == pytest.approx(85.5)
    db.expire_all()
    first = db.get(FormInstance, by_student[world.student["id"]])
    assert first.class_average == pytest.approx(85.5)


def test_form_and_class_statistics(db, submitted):
    stats = stats_svc.form_statistics(db, submitted.form["id"]).data
    assert stats["targeted"] == 1
    assert stats["submitted"] == 1
    assert stats["submission_rate"] == 100
    assert stats["completion_rate"] == 0
    by_text = {q["question_text"]: q for q in stats["questions"]}
    assert by_text["점수"]["average"] == 85
    assert by_text["수업 태도"]["average"] == 4
    assert "소감" not in by_text

    cls = stats_svc.class_statistics(db, submitted.classroom["id"]).data
    assert cls["students"] == 1
    assert cls["average_score"] == 85

    group = stats_svc.group_statistics(db, submitted.group["id"]).data
    assert group["members"]["total"] == 4
    assert group["reports"]["stage_1"] == 1
