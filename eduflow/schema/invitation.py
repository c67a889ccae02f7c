from __future__ import annotations

from pydantic import BaseModel, Field


class InvitationCreateRequest(BaseModel):
    email: str
    role: str = "student"
    message: str = ""


class BulkInvitationRequest(BaseModel):
    emails: list[str] = Field(default_factory=list)
    role: str = "student"
    message: str = ""
