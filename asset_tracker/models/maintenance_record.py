"""
Maintenance record model
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from enum import Enum
import uuid

from asset_tracker.models.types import UTCDateTime, utc_now


class MaintenanceType(str, Enum):
    ROUTINE = "routine"
    REPAIR = "repair"
    INSPECTION = "inspection"
    CALIBRATION = "calibration"


class MaintenancePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MaintenanceStatus(str, Enum):
    """Status of a maintenance record"""
    SCHEDULED = "scheduled"         # Booked for a future date
    IN_PROGRESS = "in_progress"     # Work under way
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_MAINTENANCE_STATUSES = (MaintenanceStatus.SCHEDULED, MaintenanceStatus.IN_PROGRESS)


class MaintenanceRecord(SQLModel, table=True):
    """Out-of-service work on an item"""

    __tablename__ = "maintenance_records"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )
    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)
    performed_by: uuid.UUID = Field(foreign_key="users.id")

    maintenance_type: MaintenanceType
    priority: MaintenancePriority = Field(default=MaintenancePriority.MEDIUM)
    status: MaintenanceStatus = Field(default=MaintenanceStatus.SCHEDULED, index=True)

    description: str = Field(max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=1000)
    cost: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)

    scheduled_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    next_maintenance_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # State machine methods
    def is_open(self) -> bool:
        return self.status in OPEN_MAINTENANCE_STATUSES

    def can_start(self) -> bool:
        return self.status == MaintenanceStatus.SCHEDULED

    def transition_to_completed(self, notes: Optional[str] = None) -> None:
        if not self.is_open():
            raise ValueError("Cannot complete maintenance: record is not open")

        self.status = MaintenanceStatus.COMPLETED
        self.completed_date = utc_now()
        self.updated_at = utc_now()
        self._append_notes(notes)

    def transition_to_cancelled(self, notes: Optional[str] = None) -> None:
        if not self.is_open():
            raise ValueError("Cannot cancel maintenance: record is not open")

        self.status = MaintenanceStatus.CANCELLED
        self.updated_at = utc_now()
        self._append_notes(notes)

    def _append_notes(self, notes: Optional[str]) -> None:
        if notes:
            self.notes = f"{self.notes}\n{notes}" if self.notes else notes
