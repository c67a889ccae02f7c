from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class QuestionIn(BaseModel):
    question_text: str = ""
    question_type: str = "text"
    is_required: bool = False
    rating_max: int | None = None
    is_score: bool = False


class FormCreateRequest(BaseModel):
    title: str = ""
    description: str = ""
    questions: list[QuestionIn] = Field(default_factory=list)


class FormUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    questions: list[QuestionIn] | None = None


class FormSendRequest(BaseModel):
    class_ids: list[int] = Field(default_factory=list)
    student_ids: list[int] = Field(default_factory=list)


class SubmitAnswersRequest(BaseModel):
    # question id -> raw value (text, number or rating)
    answers: dict[int, Any] = Field(default_factory=dict)
