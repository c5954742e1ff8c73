from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """A lifecycle failure the API reports to the caller.

    Subclasses fix the HTTP ``status_code`` and the stable ``error_code`` that
    clients branch on; ``message`` is shown to the user as-is for 4xx errors.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    status_code = 400
    error_code = "validation_error"


class BadRequestError(ValidationError):
    """Unknown account in a code flow, mismatched passwords, bad one-time code."""


class AuthenticationError(ServiceError):
    """Bad credentials, unverified or suspended account, bad or revoked token."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Signup disabled, or a role the caller may not assign itself."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Email already registered."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
]
