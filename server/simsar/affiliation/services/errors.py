"""Error taxonomy for affiliation operations.

Every error carries a stable ``reason`` code the UI can switch on plus a
human-readable message. Routes turn them into ``HTTPException`` via
``to_http_exception``.
"""

from __future__ import annotations

from fastapi import HTTPException, status


class AffiliationError(Exception):
    """Base class for affiliation failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_reason: str = "affiliation_error"

    def __init__(self, message: str, *, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    def to_detail(self) -> dict[str, str]:
        return {"reason": self.reason, "message": self.message}


class NotFound(AffiliationError):
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "not_found"


class Forbidden(AffiliationError):
    status_code = status.HTTP_403_FORBIDDEN
    default_reason = "forbidden"


class Conflict(AffiliationError):
    status_code = status.HTTP_409_CONFLICT
    default_reason = "conflict"


class Expired(AffiliationError):
    status_code = status.HTTP_410_GONE
    default_reason = "expired"


class InvalidState(AffiliationError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "invalid_state"


class ValidationFailed(AffiliationError):
    status_code = 422
    default_reason = "validation_failed"


def to_http_exception(exc: AffiliationError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
