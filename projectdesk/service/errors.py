from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code`` that
    clients can branch on:
    - validation_error (400)
    - unauthorized, token_invalid, token_expired (401)
    - forbidden (403)
    - not_found (404)
    - conflict, too_many_sessions (409)
    - rate_limited (429)
    - dependency_failure, server_error (500)
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


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenInvalidError(AuthenticationError):
    """Token is malformed, tampered with, of the wrong kind or already revoked (401)."""
    error_code = "token_invalid"


class TokenExpiredError(AuthenticationError):
    """Token signature is fine but its lifetime has passed (401)."""
    error_code = "token_expired"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class TooManySessionsError(ConflictError):
    """User already holds the maximum number of live refresh tokens (409)."""
    error_code = "too_many_sessions"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class DependencyFailureError(ServerError):
    """An external collaborator such as the mailer failed (500)."""
    error_code = "dependency_failure"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "TokenInvalidError",
    "TokenExpiredError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "TooManySessionsError",
    "RateLimitedError",
    "ServerError",
    "DependencyFailureError",
]
