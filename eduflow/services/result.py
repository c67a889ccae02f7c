"""Uniform return value of the data-access layer.

Every service function returns a `Result` instead of raising, so callers can
surface `error` to the user and leave their own state untouched.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

T = TypeVar("T")

NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
INVALID = "invalid"
CONFLICT = "conflict"
ERROR = "error"

_STATUS_CODES = {
    INVALID: 400,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    CONFLICT: 409,
}


@dataclass(slots=True)
class Result(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = ERROR) -> "Result":
        return cls(success=False, error=error, code=code)


def unwrap(result: Result[T]) -> T:
    """HTTP edge: failed result -> HTTPException, else the payload."""
    if not result.success:
        raise HTTPException(status_code=_STATUS_CODES.get(result.code or ERROR, 400), detail=result.error)
    return result.data


def guarded(logger: logging.Logger, message: str) -> Callable:
    """Decorator for service functions taking `db` as first argument.

    Database errors roll the session back, get logged and come back as a
    failed Result carrying `message`.
    """

    def deco(fn: Callable[..., Result]) -> Callable[..., Result]:
        @functools.wraps(fn)
        def wrapper(db: Session, *args, **kwargs) -> Result:
            try:
                return fn(db, *args, **kwargs)
            except IntegrityError as exc:
                db.rollback()
                logger.exception("%s: %s", fn.__name__, exc)
                return Result.fail(message, CONFLICT)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception("%s: %s", fn.__name__, exc)
                return Result.fail(message, ERROR)

        return wrapper

    return deco
