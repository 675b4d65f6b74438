from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions carried into result envelopes.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code``:
    - bad_credentials (401)
    - invalid_session (401)
    - access_denied (403)
    - validation_error (400)
    - not_found (404)
    - conflict (409)
    - provision_error (500)
    - unknown (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message or self.error_code
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthError(ServiceError):
    """Login rejected (401). The message never says which part was wrong."""
    status_code = 401
    error_code = "bad_credentials"
    default_message = "bad credentials"


class SessionError(ServiceError):
    """Base for failures raised while resolving the calling session."""
    status_code = 401
    error_code = "invalid_session"


class InvalidSessionError(SessionError):
    """Session id unknown or expired (401)."""
    default_message = "invalid session"


class AccessDeniedError(SessionError):
    """Session valid but its owner lacks the required right (403)."""
    status_code = 403
    error_code = "access_denied"
    default_message = "access denied"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ProvisionError(ServiceError):
    """User creation failed for an internal reason (500)."""
    status_code = 500
    error_code = "provision_error"
    default_message = "unexpected error while creating user"


class UnknownError(ServiceError):
    """Unexpected internal fault (500)."""
    status_code = 500
    error_code = "unknown"
    default_message = "unknown error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthError",
    "SessionError",
    "InvalidSessionError",
    "AccessDeniedError",
    "NotFoundError",
    "ConflictError",
    "ProvisionError",
    "UnknownError",
]
