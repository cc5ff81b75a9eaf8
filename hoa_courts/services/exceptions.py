"""
Application error taxonomy.

Services raise these; the API layer maps each to its HTTP status code via the
exception handler registered in ``api/main.py``.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors that carry a user-facing message and HTTP status."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(AppError):
    status_code = 401
    default_detail = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    default_detail = "Insufficient permissions"


class NotFound(AppError):
    status_code = 404
    default_detail = "Not found"


class Conflict(AppError):
    """Uniqueness violation (duplicate slug, invitation code, phone or email)."""

    status_code = 409
    default_detail = "Resource already exists"


class InvalidInput(AppError, ValueError):
    status_code = 400
    default_detail = "Invalid input"


class InvalidTimeRange(InvalidInput):
    default_detail = "Start time must be before end time"


class RateLimited(AppError):
    status_code = 429
    default_detail = "Too many requests. Please try again later."


class UpstreamFailure(AppError):
    """Data store, email or notification transport failure not otherwise classified."""

    status_code = 502
    default_detail = "Upstream service failure"
