"""
Action log - append-only audit trail of item lifecycle transitions
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON
from datetime import datetime
from typing import Optional
from enum import Enum
import uuid

from asset_tracker.models.types import UTCDateTime, utc_now


class ActionType(str, Enum):
    ASSIGN = "assign"
    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"
    MAINTENANCE_COMPLETED = "maintenance_completed"
    MAINTENANCE_CANCELLED = "maintenance_cancelled"
    RETIRE = "retire"


class ActionLog(SQLModel, table=True):
    """One row per lifecycle transition; never updated or deleted"""

    __tablename__ = "action_logs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )
    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)
    action_type: ActionType = Field(index=True)

    # Acting user, and the user on the receiving end when there is one
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    operator_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", nullable=True)

    previous_state: str = Field(max_length=20)
    new_state: str = Field(max_length=20)

    location: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    timestamp: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)
