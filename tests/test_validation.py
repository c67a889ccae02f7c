from __future__ import annotations

import pytest

from eduflow.utils.validation import format_phone, is_valid_email, is_valid_phone, mask_phone, password_error


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("01012345678", "010-1234-5678"),
        ("010 1234 5678", "010-1234-5678"),
        ("010-1234-56789", "010-1234-5678"),
        ("0101", "010-1"),
        ("", None),
        (None, None),
    ],
)
def test_format_phone(raw, expected):
    assert format_phone(raw) == expected


def test_is_valid_phone():
    assert is_valid_phone("010-1234-5678")
    assert is_valid_phone("011-123-4567")
    assert not is_valid_phone("01012345678")
    assert not is_valid_phone("020-1234-5678")
    assert not is_valid_phone(None)


def test_mask_phone():
    assert mask_phone("01012345678") == "010-****-5678"
    assert mask_phone("123") == "123"


def test_email_and_password():
    assert is_valid_email("a@b.co")
    assert not is_valid_email("a@b")
    assert password_error("abcdefg1") is None
    assert password_error("short1") is not None
    assert password_error("abcdefgh") == "비밀번호에 숫자가 포함되어야 합니다."
