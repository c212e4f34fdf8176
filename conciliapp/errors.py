from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL = "internal"


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        kind: ErrorKind = ErrorKind.INTERNAL,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.kind = kind


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "REQ_VALIDATION_FAILED") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
            kind=ErrorKind.VALIDATION,
        )


class ConflictError(ApiError):
    def __init__(self, message: str, *, code: str = "RECORD_REFERENCE_DUPLICATE") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="business_rule",
            retryable=False,
            http_status=409,
            kind=ErrorKind.CONFLICT,
        )


class PermissionDeniedError(ApiError):
    def __init__(self, message: str, *, code: str = "AUTH_FORBIDDEN") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="security_sensitive",
            retryable=False,
            http_status=403,
            kind=ErrorKind.PERMISSION,
        )


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "RECORD_NOT_FOUND") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
            kind=ErrorKind.NOT_FOUND,
        )


class UpstreamUnavailable(ApiError):
    def __init__(self, message: str, *, code: str = "DIRECTORY_UNAVAILABLE") -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="transient",
            retryable=True,
            http_status=503,
            kind=ErrorKind.UPSTREAM_UNAVAILABLE,
        )


@dataclass
class Outcome:
    """Result of one operation attempted without exception control flow."""

    ok: bool
    value: Any = None
    error_kind: ErrorKind | None = None
    error_code: str = ""
    message: str = ""

    def as_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        return {
            "ok": False,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_code": self.error_code,
            "message": self.message,
        }


def attempt(fn: Callable[[], Any]) -> Outcome:
    try:
        return Outcome(ok=True, value=fn())
    except ApiError as exc:
        return Outcome(ok=False, error_kind=exc.kind, error_code=exc.code, message=exc.message)
