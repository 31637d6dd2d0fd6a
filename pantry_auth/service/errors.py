from __future__ import annotations

from enum import Enum
from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that ends up in the ``error.code`` field of the response envelope.
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
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCurrentPasswordError(ValidationError):
    """Password change rejected because the current password is wrong (400)."""
    error_code = "invalid_current_password"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate username or email (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class AuthErrorKind(str, Enum):
    """Distinct authentication/authorization outcomes callers branch on."""

    TOKEN_MISSING = "token_missing"
    TOKEN_INVALID = "token_invalid"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    USER_UNAVAILABLE = "user_unavailable"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    LOCATION_NOT_ACCESSIBLE = "location_not_accessible"
    CREDENTIALS_INVALID = "credentials_invalid"


class AuthError(ServiceError):
    """Authentication failed (401) or was refused (403).

    ``kind`` identifies the failure; ``error_code`` mirrors it.
    """

    status_code = 401
    kind: AuthErrorKind = AuthErrorKind.TOKEN_INVALID
    default_message = "authentication failed"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[dict] = None) -> None:
        super().__init__(
            message or self.default_message,
            detail=detail,
            error_code=self.kind.value,
        )

    @property
    def requires_login(self) -> bool:
        """True when the client must start over with username and password."""
        return self.kind in {
            AuthErrorKind.SESSION_NOT_FOUND,
            AuthErrorKind.SESSION_EXPIRED,
            AuthErrorKind.USER_UNAVAILABLE,
        }


class TokenMissingError(AuthError):
    kind = AuthErrorKind.TOKEN_MISSING
    default_message = "authentication token missing"


class TokenInvalidError(AuthError):
    kind = AuthErrorKind.TOKEN_INVALID
    default_message = "token invalid or expired"


class SessionNotFoundError(AuthError):
    kind = AuthErrorKind.SESSION_NOT_FOUND
    default_message = "refresh session not found"


class SessionExpiredError(AuthError):
    kind = AuthErrorKind.SESSION_EXPIRED
    default_message = "refresh session expired"


class UserUnavailableError(AuthError):
    kind = AuthErrorKind.USER_UNAVAILABLE
    default_message = "user not found or inactive"


class InvalidCredentialsError(AuthError):
    kind = AuthErrorKind.CREDENTIALS_INVALID
    default_message = "invalid username or password"


class InsufficientPermissionsError(AuthError):
    status_code = 403
    kind = AuthErrorKind.INSUFFICIENT_PERMISSIONS
    default_message = "insufficient permissions for this operation"


class LocationNotAccessibleError(AuthError):
    status_code = 403
    kind = AuthErrorKind.LOCATION_NOT_ACCESSIBLE
    default_message = "location not accessible"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCurrentPasswordError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "AuthErrorKind",
    "AuthError",
    "TokenMissingError",
    "TokenInvalidError",
    "SessionNotFoundError",
    "SessionExpiredError",
    "UserUnavailableError",
    "InvalidCredentialsError",
    "InsufficientPermissionsError",
    "LocationNotAccessibleError",
]
