"""
Pydantic schemas for users
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional
from datetime import datetime
import uuid

from asset_tracker.models.user import UserRole


class UserCreate(BaseModel):
    """User creation schema; the tenant always comes from the caller"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = Field(default=UserRole.VIEWER)


class UserResponse(BaseModel):
    """User response model"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    tenant_id: uuid.UUID
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None


class CurrentUserResponse(BaseModel):
    """Identity resolved from the bearer token"""
    user: UserResponse
    tenant_id: uuid.UUID
    tenant_name: Optional[str] = None
