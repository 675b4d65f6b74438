from __future__ import annotations

from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from roomgate.service.errors import ServiceError, UnknownError

_ERROR_CODES = {
    "bad_credentials",
    "invalid_session",
    "access_denied",
    "validation_error",
    "not_found",
    "conflict",
    "provision_error",
    "unknown",
}


class ResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class ErrorBody(BaseModel):
    """Error half of the envelope with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


class Envelope(BaseModel):
    """Uniform result of every gateway operation.

    Exactly one of ``data`` (for SUCCESS) or ``error`` (for ERROR and
    UNKNOWN) is meaningful. ``message`` carries the short human-readable
    outcome, e.g. the session id after login or the count of a room.
    """

    status: ResultStatus
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))

    @classmethod
    def success(cls, message: Optional[str] = None, data: Any = None) -> "Envelope":
        return cls(status=ResultStatus.SUCCESS, message=message, data=data)

    @classmethod
    def from_error(cls, exc: ServiceError) -> "Envelope":
        status = (
            ResultStatus.UNKNOWN if isinstance(exc, UnknownError) else ResultStatus.ERROR
        )
        return cls(
            status=status,
            message=exc.message,
            error=ErrorBody(
                code=exc.error_code, message=exc.message, details=exc.detail or None
            ),
        )

    @classmethod
    def unknown(cls) -> "Envelope":
        return cls.from_error(UnknownError())

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def http_status(self) -> int:
        if self.status == ResultStatus.SUCCESS:
            return 200
        if self.status == ResultStatus.UNKNOWN:
            return 500
        return _status_for_code(self.error.code if self.error else "unknown")


def _status_for_code(code: str) -> int:
    return {
        "bad_credentials": 401,
        "invalid_session": 401,
        "access_denied": 403,
        "validation_error": 400,
        "not_found": 404,
        "conflict": 409,
        "provision_error": 500,
    }.get(code, 500)


__all__ = ["ResultStatus", "ErrorBody", "Envelope"]
