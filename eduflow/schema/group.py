from __future__ import annotations

from pydantic import BaseModel, Field


class GroupCreateRequest(BaseModel):
    name: str = ""
    description: str = ""


class GroupUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class MemberAddRequest(BaseModel):
    role: str
    user_id: int | None = None
    email: str | None = None


class MemberRoleRequest(BaseModel):
    role: str


class TransferOwnershipRequest(BaseModel):
    new_owner_id: int = Field(..., ge=1)
