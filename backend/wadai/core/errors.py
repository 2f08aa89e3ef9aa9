"""Service-layer exceptions mapped to HTTP responses by the handlers in wadai.main.

Each class carries a stable ``error_code`` and a status code. ``message`` is the
only text that reaches the client; driver and library errors are logged, never
echoed.
"""

from __future__ import annotations


class AppError(Exception):
    status_code: int = 500
    error_code: str = "server_error"
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.error_code, "status": self.status_code}


class Unauthorized(AppError):
    """Missing/invalid/expired token or wrong credentials (401)."""

    status_code = 401
    error_code = "unauthorized"
    default_message = "Unauthorized"


class InvalidToken(Unauthorized):
    """Access token failed validation. Expired and tampered tokens are indistinguishable."""

    default_message = "Invalid token"


class Forbidden(AppError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    error_code = "not_found"
    default_message = "Resource not found"


class Conflict(AppError):
    """Duplicate username or email (409)."""

    status_code = 409
    error_code = "conflict"
    default_message = "Conflict"


class ValidationFailed(AppError):
    """Malformed input shape, checked before touching the database (422)."""

    status_code = 422
    error_code = "validation_error"
    default_message = "Validation error"


class BadRequest(AppError):
    """Invalid, expired or consumed single-use token; other domain-rule violations (400)."""

    status_code = 400
    error_code = "bad_request"
    default_message = "Bad request"


class InternalError(AppError):
    """Hashing, configuration or transport failure not caused by the caller (500)."""
