"""Custom exceptions for moderation services."""

from __future__ import annotations

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
    _HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class ModerationError(Exception):
    """Base class for moderation related errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "moderation_error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class NotFoundError(ModerationError):
    """Raised when a report or its target content is missing."""

    status_code = status.HTTP_404_NOT_FOUND
    detail = "not_found"


class ConflictError(ModerationError):
    status_code = status.HTTP_409_CONFLICT
    detail = "conflict"


class DuplicateReportError(ConflictError):
    """Raised when the target already has a report under review."""

    detail = "report_already_open"


class ValidationError(ModerationError):
    status_code = _HTTP_422
    detail = "validation_error"


class SelfReportError(ValidationError):
    """Raised when a user reports their own content."""

    detail = "cannot_report_own_content"


class QuotaExhaustedError(ModerationError):
    """Raised when a manual sweep is requested with no daily quota left."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    detail = "daily_quota_exhausted"


class StoreUnavailableError(ModerationError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "store_unavailable"


class SuspensionError(ModerationError):
    """Raised by the suspension client when the auth service call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "suspension_failed"
