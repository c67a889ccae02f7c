from __future__ import annotations

import re

_PHONE_RE = re.compile(r"^01[0-9]-\d{3,4}-\d{4}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def format_phone(value: str | None) -> str | None:
    """Digits only, cut to 11, then 3-4-4 with hyphens (010-1234-5678)."""
    if not value:
        return None
    digits = re.sub(r"\D", "", value)[:11]
    if not digits:
        return None
    if len(digits) <= 3:
        return digits
    if len(digits) <= 7:
        return f"{digits[:3]}-{digits[3:]}"
    return f"{digits[:3]}-{digits[3:7]}-{digits[7:]}"


def is_valid_phone(value: str | None) -> bool:
    return bool(value) and bool(_PHONE_RE.match(value))


def mask_phone(value: str | None) -> str | None:
    formatted = format_phone(value)
    if not formatted or len(formatted) != 13:
        return value
    return f"{formatted[:4]}****{formatted[8:]}"


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value.strip()))


def password_error(password: str, min_length: int = 8) -> str | None:
    """Return an error message, or None when the password is acceptable."""
    if not password or not password.strip():
        return "비밀번호를 입력해 주세요."
    if len(password) < min_length:
        return f"비밀번호는 최소 {min_length}자 이상이어야 합니다."
    if not re.search(r"[A-Za-z]", password):
        return "비밀번호에 영문자가 포함되어야 합니다."
    if not re.search(r"\d", password):
        return "비밀번호에 숫자가 포함되어야 합니다."
    return None
