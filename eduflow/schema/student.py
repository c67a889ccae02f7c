from __future__ import annotations

from pydantic import BaseModel, Field


class StudentFields(BaseModel):
    name: str | None = None
    student_number: str | None = None
    phone: str | None = None
    parent_phone: str | None = None
    class_id: int | None = None
    user_id: int | None = None


class StudentCreateRequest(StudentFields):
    name: str = ""


class StudentBatchRequest(BaseModel):
    rows: list[StudentCreateRequest] = Field(default_factory=list)
