from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    API = "api"
    INTERNAL = "internal"


class SyncError(Exception):
    """Base class for every failure raised by the source clients and sync steps."""

    kind: ErrorKind = ErrorKind.API

    def __init__(self, message: str, *, source: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source
        self.status = status


class ApiError(SyncError):
    """Raised for a non-2xx provider response that has no more specific kind."""


class AuthError(ApiError):
    kind = ErrorKind.AUTH


class RateLimitError(ApiError):
    kind = ErrorKind.RATE_LIMIT


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND


class TransientError(ApiError):
    """Network failure, timeout or 5xx response."""

    kind = ErrorKind.TRANSIENT


class ValidationError(SyncError):
    """Raised when a payload or a single record cannot be parsed into a canonical shape."""

    kind = ErrorKind.VALIDATION


def error_for_status(status: int, message: str, *, source: str | None = None) -> ApiError:
    if status in (401, 403):
        error_cls: type[ApiError] = AuthError
    elif status == 429:
        error_cls = RateLimitError
    elif status == 404:
        error_cls = NotFoundError
    elif status >= 500:
        error_cls = TransientError
    else:
        error_cls = ApiError
    return error_cls(message, source=source, status=status)
