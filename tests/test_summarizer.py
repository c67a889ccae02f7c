from __future__ import annotations

import json

import httpx
import pytest

from eduflow.core.config import settings
from eduflow.db.models.report import Report
from eduflow.services import reports as reports_svc
from eduflow.services import student_reports as student_reports_svc
from eduflow.services.result import FORBIDDEN, INVALID
from eduflow.utils import summarizer
from eduflow.utils.summarizer import GeminiClient, SOURCE_FALLBACK, SOURCE_GEMINI

LONG_TEXT = " ".join(f"학생은 {i}번째 활동에서 적극적으로 참여했습니다." for i in range(40))


def _client(handler) -> GeminiClient:
    return GeminiClient(
        base_url="https://gemini.test/v1beta",
        api_key="k",
        model="gemini-pro",
        transport=httpx.MockTransport(handler),
    )


def _ok(text: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

    return handler


def test_gemini_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return _ok("■ 학생 정보")(request)

    with _client(handler) as client:
        assert client.generate("프롬프트") == "■ 학생 정보"

    assert seen["url"].startswith("https://gemini.test/v1beta/models/gemini-pro:generateContent")
    assert "key=k" in seen["url"]
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "프롬프트"
    assert seen["body"]["generationConfig"]["temperature"] == 0.7
    assert seen["body"]["generationConfig"]["maxOutputTokens"] == 4096


def test_summarize_uses_gemini():
    summary = summarizer.summarize(LONG_TEXT, client=_client(_ok("## 강점\n\n\n\n성실함")))
    assert summary.source == SOURCE_GEMINI
    assert summary.text == "### 강점\n\n성실함"


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500, text="boom"),
        lambda request: httpx.Response(200, json={"candidates": []}),
        lambda request: httpx.Response(200, text="not json"),
    ],
)
def test_summarize_falls_back_on_failure(handler):
    summary = summarizer.summarize(LONG_TEXT, client=_client(handler))
    assert summary.source == SOURCE_FALLBACK
    assert len(summarizer.split_sentences(summary.text)) == settings.SUMMARY_MAX_SENTENCES


def test_summarize_without_key_or_short_input():
    assert summarizer.summarize(LONG_TEXT).source == SOURCE_FALLBACK

    def handler(request):
        raise AssertionError("short input must not reach the API")

    assert summarizer.summarize("짧은 글.", client=_client(handler)).source == SOURCE_FALLBACK


def test_extractive_summary_keeps_order():
    text = "사과 사과 사과. 바나나. 사과 좋아. 포도."
    out = summarizer.extractive_summary(text, max_sentences=2)
    assert out.splitlines() == ["사과 사과 사과.", "사과 좋아."]


TT_COMMENT = "수업 참여가 성실하고 과제를 꾸준히 수행했습니다."
T_COMMENT = "학기 전체적으로 성장세가 뚜렷하며 발표 능력이 좋아졌습니다."


@pytest.fixture
def completed(db, submitted):
    reports_svc.advance_report_stage(db, submitted.report_id, submitted.time_teacher.id, TT_COMMENT, "time_teacher")
    reports_svc.advance_report_stage(db, submitted.report_id, submitted.teacher.id, T_COMMENT, "teacher")
    return submitted


def test_raw_report_contents(db, submitted):
    raw = student_reports_svc.generate_raw_report(db, submitted.instance_id).data
    assert raw.splitlines()[0] == "◆ 중간 평가 ◆"
    assert "> 반명: 1반" in raw
    assert "> 이름: 김학생" in raw
    assert "1. 점수: 85" in raw
    assert "2. 수업 태도: 4 / 5" in raw
    assert "3. 소감: 열심히 했습니다." in raw


def test_summary_requires_completed_report(db, submitted):
    res = student_reports_svc.generate_report_summary(db, submitted.report_id, submitted.owner)
    assert res.code == INVALID


def test_summary_generation_and_edit(db, completed):
    denied = student_reports_svc.generate_report_summary(db, completed.report_id, completed.student_user)
    assert denied.code == FORBIDDEN

    res = student_reports_svc.generate_report_summary(
        db, completed.report_id, completed.teacher, client=_client(_ok("■ 학생 정보\n김학생"))
    )
    assert res.success, res.error
    assert res.data["source"] in (SOURCE_GEMINI, SOURCE_FALLBACK)
    assert T_COMMENT in res.data["raw_report"]
    assert db.get(Report, completed.report_id).final_report == res.data["ai_report"]

    edited = student_reports_svc.update_student_report(db, res.data["id"], completed.teacher, "수정된 보고서")
    assert edited.data["ai_report"] == "수정된 보고서"
    db.expire_all()
    assert db.get(Report, completed.report_id).final_report == "수정된 보고서"

    # regenerating updates the same row
    again = student_reports_svc.generate_report_summary(db, completed.report_id, completed.teacher)
    assert again.data["id"] == res.data["id"]
    assert len(student_reports_svc.list_group_student_reports(db, completed.group["id"]).data) == 1
