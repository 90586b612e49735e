# aether/errors.py
"""
Exception taxonomy. Each error carries a stable error_code and the HTTP status
the API layer maps it to. Policy rejections from the content guard are not
errors and never appear here.
"""

from typing import Any, Dict, Optional

E_NOT_FOUND = "E_NOT_FOUND"
E_FORBIDDEN = "E_FORBIDDEN"
E_ALREADY_MATCHED = "E_ALREADY_MATCHED"
E_AUTH = "E_AUTH"
E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"
E_UNAUTHORIZED = "E_UNAUTHORIZED"
E_SUSPENDED = "E_SUSPENDED"
E_RATE_LIMIT = "E_RATE_LIMIT"
E_INTERNAL = "E_INTERNAL"


class AetherError(Exception):
    error_code = E_INTERNAL
    http_status = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": None,
            "status": "error",
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(AetherError):
    error_code = E_NOT_FOUND
    http_status = 404


class ForbiddenError(AetherError):
    error_code = E_FORBIDDEN
    http_status = 403


class AlreadyMatchedError(AetherError):
    """Raised to the losing acceptor when a request has already been taken."""
    error_code = E_ALREADY_MATCHED
    http_status = 409

    def __init__(self, request_id: str):
        super().__init__("Request already taken by another listener", {"request_id": request_id})
        self.request_id = request_id


class AuthError(AetherError):
    error_code = E_AUTH
    http_status = 401

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        # vendor-neutral prefix, mirrors what the sign-in form shows
        super().__init__(f"Security: {message}", details)


class StoreUnavailableError(AetherError):
    """A store read/write failed; user-initiated writes may be retried."""
    error_code = E_STORE_UNAVAILABLE
    http_status = 503

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["retryable"] = True
        return body


class UnauthorizedError(AetherError):
    """Missing or invalid bearer token / admin key."""
    error_code = E_UNAUTHORIZED
    http_status = 401
