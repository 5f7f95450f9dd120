"""Service error taxonomy translated to HTTP by the API layer."""

from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for errors that surface to API callers with a stable code."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Any = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ServiceError):
    status_code = 401
    default_code = "NOT_AUTHENTICATED"


class PermissionDeniedError(ServiceError):
    status_code = 403
    default_code = "INSUFFICIENT_PERMISSIONS"


class ValidationFailedError(ServiceError):
    status_code = 400
    default_code = "INVALID_INPUT"


class NotFoundError(ServiceError):
    status_code = 404
    default_code = "NOT_FOUND"


class StateConflictError(ServiceError):
    status_code = 409
    default_code = "CONFLICT"


class CollaboratorUnavailableError(ServiceError):
    """A downstream service could not be reached or answered with 5xx."""

    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"


class WebhookSignatureError(ServiceError):
    """Raised for missing or mismatched webhook signatures. Never carries the expected value."""

    status_code = 401
    default_code = "INVALID_SIGNATURE"
