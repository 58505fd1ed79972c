"""
Pydantic schemas for authentication and tokens
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional
from datetime import datetime
import uuid

from asset_tracker.models.user import UserRole
from asset_tracker.schemas.user import UserResponse


class TokenClaims(BaseModel):
    """Decoded JWT payload"""
    user_id: uuid.UUID = Field(..., alias="sub", description="User ID")
    email: str = Field(..., description="User email")
    role: UserRole = Field(..., description="User role")
    tenant_id: uuid.UUID = Field(..., description="Tenant ID")
    exp: datetime = Field(..., description="Expiration time")


class AuthContext(BaseModel):
    """
    Identity resolved for the current request.

    Passed explicitly to every store and lifecycle call; ``tenant_id`` is the
    only tenant any downstream query may touch.
    """
    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    email: str
    role: UserRole
    tenant_id: uuid.UUID
    tenant_name: Optional[str] = None


class LoginRequest(BaseModel):
    """User login schema"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=100)
    tenant_subdomain: str = Field(..., min_length=1, max_length=100)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Token response"""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[datetime] = None
    user: UserResponse
