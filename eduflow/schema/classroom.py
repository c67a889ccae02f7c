from __future__ import annotations

from pydantic import BaseModel, Field


class ClassCreateRequest(BaseModel):
    name: str = ""
    description: str = ""


class ClassUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class ClassMemberRequest(BaseModel):
    user_id: int = Field(..., ge=1)
    role: str


class StudentIdsRequest(BaseModel):
    student_ids: list[int] = Field(default_factory=list)


class MoveStudentsRequest(BaseModel):
    to_class_id: int = Field(..., ge=1)
    student_ids: list[int] = Field(default_factory=list)
