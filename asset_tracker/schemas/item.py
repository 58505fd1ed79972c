"""
Pydantic schemas for items and their lifecycle records
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
import uuid

from asset_tracker.models.action_log import ActionType
from asset_tracker.models.assignment import AssignmentStatus
from asset_tracker.models.item import ItemCondition, ItemStatus
from asset_tracker.models.maintenance_record import MaintenancePriority, MaintenanceStatus, MaintenanceType
from asset_tracker.schemas.requests import LifecycleRequest


# Requests, camelCase on the wire like the lifecycle payloads

class ItemCreate(LifecycleRequest):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    nfc_tag: Optional[str] = Field(default=None, min_length=1, max_length=50)
    serial_number: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=100)
    condition: Optional[ItemCondition] = None


class ItemUpdate(LifecycleRequest):
    """Descriptive fields only; status changes go through the lifecycle endpoints"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    nfc_tag: Optional[str] = Field(default=None, min_length=1, max_length=50)
    serial_number: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=100)
    condition: Optional[ItemCondition] = None

    @field_validator("name", "category")
    @classmethod
    def required_fields_not_null(cls, value):
        # May be omitted, but an item always keeps a name and category
        if value is None:
            raise ValueError("cannot be null")
        return value


class AssignmentNotesUpdate(LifecycleRequest):
    """Only the notes of an assignment are editable"""
    notes: Optional[str] = Field(default=None, max_length=1000)


# Responses

class ItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    nfc_tag: Optional[str] = None
    name: str
    description: Optional[str] = None
    category: str
    serial_number: Optional[str] = None
    location: Optional[str] = None
    condition: Optional[ItemCondition] = None
    status: ItemStatus
    current_assigned_to: Optional[uuid.UUID] = None
    version: int
    last_maintenance_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    assigned_to: uuid.UUID
    assigned_by: uuid.UUID
    status: AssignmentStatus
    assigned_at: datetime
    expected_return_date: Optional[datetime] = None
    actual_return_date: Optional[datetime] = None
    returned_by: Optional[uuid.UUID] = None
    return_condition: Optional[ItemCondition] = None
    notes: Optional[str] = None


class MaintenanceRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    performed_by: uuid.UUID
    maintenance_type: MaintenanceType
    priority: MaintenancePriority
    status: MaintenanceStatus
    description: str
    notes: Optional[str] = None
    cost: Optional[Decimal] = None
    scheduled_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    next_maintenance_date: Optional[datetime] = None
    created_at: datetime


class ActionLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    item_id: uuid.UUID
    action_type: ActionType
    user_id: uuid.UUID
    operator_id: Optional[uuid.UUID] = None
    previous_state: str
    new_state: str
    location: Optional[str] = None
    notes: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime


class ItemLookupResponse(BaseModel):
    """Result of an NFC scan"""
    item: ItemResponse
    assignment: Optional[AssignmentResponse] = None
    maintenance: Optional[MaintenanceRecordResponse] = None
    recent_actions: List[ActionLogResponse] = []


class ItemTransitionResponse(BaseModel):
    """Item state after a lifecycle transition plus the record it touched"""
    message: str
    item: ItemResponse
    assignment: Optional[AssignmentResponse] = None
    maintenance: Optional[MaintenanceRecordResponse] = None


class Page(BaseModel):
    total: int
    limit: int
    offset: int


class ItemListResponse(Page):
    items: List[ItemResponse]


class AssignmentListResponse(Page):
    assignments: List[AssignmentResponse]


class MaintenanceListResponse(Page):
    records: List[MaintenanceRecordResponse]


class ActionLogListResponse(Page):
    logs: List[ActionLogResponse]


class AssignmentStats(BaseModel):
    active_assignments: int
    overdue_assignments: int
    returned_assignments: int
    users_with_assignments: int


class CategoryCount(BaseModel):
    category: str
    count: int


class ActionLogSummary(BaseModel):
    total_actions: int
    actions_by_type: Dict[str, int]
    recent_activity: List[ActionLogResponse]
