"""
core/errors.py -- Typed error taxonomy shared by auth/ services and api/ routes.

Services raise these; api/main.py translates them into the standard
{"error": {"code", "message", "fields"}} envelope with the matching status.
Route handlers never build error JSON for expected failures themselves.

Messages are safe to show to clients: no stack traces, no internal IDs.
InvalidCredentials carries one fixed message whatever the root cause
(unknown username or wrong password) so login cannot be used to enumerate
accounts.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from typing import Optional


class AppError(Exception):
    """Base class for every expected failure in AdminConsole."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None, fields: Optional[dict[str, list[str]]] = None) -> None:
        self.message = message or type(self).message
        self.fields = fields
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload: dict = {"code": self.code, "message": self.message}
        if self.fields:
            payload["fields"] = self.fields
        return payload


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    message = "Validation error."

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(fields={field: [message]})


class InvalidCredentials(AppError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password."

    def __init__(self) -> None:
        # No overrides: the message must be identical for every root cause.
        super().__init__()


class Unauthorized(AppError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "Admin access required."


class Conflict(AppError):
    status_code = 400
    code = "conflict"
    message = "Resource already exists."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class InvalidOrExpiredToken(AppError):
    status_code = 400
    code = "invalid_or_expired_token"
    message = "Invalid or expired reset token."

    def __init__(self) -> None:
        super().__init__()


class Internal(AppError):
    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."
