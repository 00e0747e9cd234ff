# sessionauth/core/errors.py
"""
Domain errors raised by services and dependencies.

Each error knows its HTTP status and stable error code; `sessionauth.main`
renders every AuthError into the same JSON envelope:

    {"status": "error", "error": "<CODE>", "message": "...", "details": {...}}

Services never raise HTTPException directly, so they stay usable from scripts
and tests without a request context.
"""
from __future__ import annotations

from typing import Any


class AuthError(Exception):
    status_code: int = 400
    error_code: str = "BAD_REQUEST"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": "error", "error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AuthError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class InvalidCredentials(AuthError):
    # Same message for unknown email and wrong password.
    status_code = 401
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class EmailNotVerified(AuthError):
    status_code = 401
    error_code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email first"


class InvalidOrExpiredCode(AuthError):
    status_code = 400
    error_code = "INVALID_OR_EXPIRED_CODE"
    default_message = "Invalid or expired code"


class Unauthorized(AuthError):
    status_code = 401
    error_code = "UNAUTHORIZED"
    default_message = "Unauthorized"


class NotFound(AuthError):
    status_code = 404
    error_code = "NOT_FOUND"
    default_message = "Not found"


class Conflict(AuthError):
    status_code = 400
    error_code = "CONFLICT"
    default_message = "Conflict"


class EmailNotConfiguredError(AuthError):
    status_code = 500
    error_code = "EMAIL_NOT_CONFIGURED"
    default_message = "Email delivery is not configured"


class EmailDeliveryError(AuthError):
    """
    Raised when a provider is configured but delivery fails.
    Message should be safe to surface to clients.
    """

    status_code = 502
    error_code = "EMAIL_DELIVERY_FAILED"
    default_message = "Email delivery failed"
