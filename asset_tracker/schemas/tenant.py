"""
Pydantic schemas for tenants
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional
from datetime import datetime
import uuid


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    subdomain: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    contact_email: EmailStr


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    subdomain: str
    contact_email: str
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
