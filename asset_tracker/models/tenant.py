"""
Tenant model - Multi-tenancy foundation
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from typing import Optional
import uuid

from asset_tracker.models.types import UTCDateTime, utc_now


class Tenant(SQLModel, table=True):
    """Tenant model for multi-tenant architecture"""

    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    subdomain: str = Field(unique=True, index=True, max_length=100, description="Unique tenant identifier used at login")
    contact_email: str = Field(max_length=255)

    # Deactivating a tenant locks out every user under it on their next request
    is_active: bool = Field(default=True, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
