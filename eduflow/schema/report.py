from __future__ import annotations

from pydantic import BaseModel, Field


class CommentRequest(BaseModel):
    comment: str = ""
    comment_type: str = ""


class RejectRequest(BaseModel):
    rejection_reason: str = ""


class ResetRequest(BaseModel):
    reason: str = ""


class AssignReviewersRequest(BaseModel):
    time_teacher_id: int | None = Field(default=None, ge=1)
    teacher_id: int | None = Field(default=None, ge=1)


class StudentReportUpdateRequest(BaseModel):
    ai_report: str = ""
