"""
Schemas module
"""

from asset_tracker.schemas.token import AuthContext, LoginRequest, RefreshRequest, TokenClaims, TokenResponse
from asset_tracker.schemas.user import CurrentUserResponse, UserCreate, UserResponse
from asset_tracker.schemas.tenant import TenantCreate, TenantResponse

__all__ = [
    "AuthContext",
    "CurrentUserResponse",
    "LoginRequest",
    "RefreshRequest",
    "TenantCreate",
    "TenantResponse",
    "TokenClaims",
    "TokenResponse",
    "UserCreate",
    "UserResponse",
]
