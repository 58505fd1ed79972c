"""
Item (asset) model with lifecycle state machine
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional
from enum import Enum
import uuid

from asset_tracker.models.types import UTCDateTime, utc_now


class ItemStatus(str, Enum):
    """Lifecycle status of an item"""
    AVAILABLE = "available"         # On the shelf, can be assigned
    ASSIGNED = "assigned"           # Held by a user through an open assignment
    MAINTENANCE = "maintenance"     # Out of service
    RETIRED = "retired"             # Terminal


class ItemCondition(str, Enum):
    """Physical condition reported at check-in/out"""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DAMAGED = "damaged"


# Legal status transitions; anything not listed is a conflict
ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.AVAILABLE: frozenset({ItemStatus.ASSIGNED, ItemStatus.MAINTENANCE, ItemStatus.RETIRED}),
    ItemStatus.ASSIGNED: frozenset({ItemStatus.AVAILABLE, ItemStatus.MAINTENANCE, ItemStatus.RETIRED}),
    ItemStatus.MAINTENANCE: frozenset({ItemStatus.AVAILABLE, ItemStatus.RETIRED}),
    ItemStatus.RETIRED: frozenset(),
}


class Item(SQLModel, table=True):
    """Tracked asset, optionally tagged with an NFC identifier"""

    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("tenant_id", "serial_number", name="uq_item_tenant_serial"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )

    # Identification
    nfc_tag: Optional[str] = Field(default=None, unique=True, index=True, max_length=50)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: str = Field(index=True, max_length=100)
    serial_number: Optional[str] = Field(default=None, max_length=100)

    # Where it is and what shape it is in
    location: Optional[str] = Field(default=None, max_length=100)
    condition: Optional[ItemCondition] = Field(default=None)

    # Lifecycle, only ever written through the item store transition entry point
    status: ItemStatus = Field(
        default=ItemStatus.AVAILABLE,
        index=True,
        description="Current lifecycle status"
    )
    current_assigned_to: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="users.id",
        index=True,
        nullable=True,
        description="Holder of the open assignment; set iff status is assigned"
    )

    # Optimistic concurrency control
    version: int = Field(
        default=1,
        description="Version number for compare-and-swap on status transitions"
    )

    # Maintenance bookkeeping
    last_maintenance_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    next_maintenance_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    # State machine methods
    def can_transition_to(self, new_status: ItemStatus) -> tuple[bool, str]:
        """Check if the item may move to new_status"""
        if self.status == ItemStatus.RETIRED:
            return False, "Item is retired"

        if new_status not in ITEM_TRANSITIONS[self.status]:
            return False, f"Cannot move item from {self.status.value} to {new_status.value}"

        return True, "Transition allowed"

    def is_assignable(self) -> bool:
        return self.status == ItemStatus.AVAILABLE

    def is_retired(self) -> bool:
        return self.status == ItemStatus.RETIRED
