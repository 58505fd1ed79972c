"""
Domain errors raised by the auth layer, the validators and the lifecycle engine.

Every error carries a stable machine-readable ``code`` and the HTTP status it
maps to at the API boundary. The handler registered in ``asset_tracker.main``
renders them as ``{"error": ..., "code": ..., **extra}``.
"""

from typing import Any, Dict, Iterable, List, Optional

from fastapi import status


class AssetTrackerError(Exception):
    """Base class for all domain errors"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.extra}


# Authentication

class CredentialMissing(AssetTrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_MISSING"
    message = "Access token required"


class CredentialExpired(AssetTrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class CredentialInvalid(AssetTrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_INVALID"
    message = "Invalid token"


class InvalidCredentials(AssetTrackerError):
    """Login failure; deliberately does not say whether email or password was wrong"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class PrincipalInactive(AssetTrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "PRINCIPAL_INACTIVE"
    message = "User or tenant account is inactive"


# Authorization

def _role_name(role: Any) -> str:
    return str(getattr(role, "value", role))


class InsufficientRole(AssetTrackerError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INSUFFICIENT_PERMISSIONS"
    message = "Insufficient permissions"

    def __init__(self, required: Iterable[str], current: str):
        self.required = sorted(_role_name(role) for role in required)
        self.current = _role_name(current)
        super().__init__(required=self.required, current=self.current)


# Payloads

class ValidationFailed(AssetTrackerError):
    status_code = 422
    code = "VALIDATION_ERROR"
    message = "Request validation failed"

    def __init__(self, errors: List[Dict[str, str]], message: Optional[str] = None):
        self.errors = errors
        super().__init__(message, errors=errors)

    @property
    def fields(self) -> List[str]:
        return [error["field"] for error in self.errors]


# Lifecycle and storage

class LifecycleConflict(AssetTrackerError):
    status_code = status.HTTP_409_CONFLICT
    code = "LIFECYCLE_CONFLICT"
    message = "Requested transition is not allowed from the current state"


class NotFound(AssetTrackerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class StoreUnavailable(AssetTrackerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"
    message = "Data store unavailable"
