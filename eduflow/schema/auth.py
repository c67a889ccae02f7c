from __future__ import annotations

from pydantic import BaseModel


class SignupRequest(BaseModel):
    name: str = ""
    email: str = ""
    username: str = ""
    password: str = ""
    phone: str | None = None


class ProfileUpdateRequest(BaseModel):
    # e-mail is the login identity and is not editable here
    name: str | None = None
    phone: str | None = None


class PasswordChangeRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""
