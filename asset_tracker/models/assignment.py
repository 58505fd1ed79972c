"""
Assignment model - links an item to the user currently holding it
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from typing import Optional
from enum import Enum
import uuid

from asset_tracker.models.item import ItemCondition
from asset_tracker.models.types import UTCDateTime, utc_now


class AssignmentStatus(str, Enum):
    """Status of an assignment"""
    ACTIVE = "active"
    RETURNED = "returned"
    OVERDUE = "overdue"             # Still open, past expected return date


OPEN_ASSIGNMENT_STATUSES = (AssignmentStatus.ACTIVE, AssignmentStatus.OVERDUE)


class Assignment(SQLModel, table=True):
    """Custody record created when an item enters the assigned state"""

    __tablename__ = "assignments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )
    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)

    # Who holds it and who handed it out
    assigned_to: uuid.UUID = Field(foreign_key="users.id", index=True)
    assigned_by: uuid.UUID = Field(foreign_key="users.id")

    status: AssignmentStatus = Field(default=AssignmentStatus.ACTIVE, index=True)

    assigned_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    expected_return_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    actual_return_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # Return details
    returned_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", nullable=True)
    return_condition: Optional[ItemCondition] = None

    notes: Optional[str] = Field(default=None, max_length=1000)

    def is_open(self) -> bool:
        return self.status in OPEN_ASSIGNMENT_STATUSES

    def close(self, returned_by: uuid.UUID, condition: Optional[ItemCondition] = None, notes: Optional[str] = None) -> None:
        """Mark the assignment returned"""
        if not self.is_open():
            raise ValueError("Cannot close assignment: it is not open")

        self.status = AssignmentStatus.RETURNED
        self.actual_return_date = utc_now()
        self.returned_by = returned_by
        self.return_condition = condition
        if notes:
            self.notes = f"{self.notes}\n{notes}" if self.notes else notes
