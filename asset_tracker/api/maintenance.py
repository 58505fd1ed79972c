"""
Maintenance record API endpoints
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
import uuid

from asset_tracker.core.dependencies import get_item_store
from asset_tracker.core.permissions import require_auth, require_role
from asset_tracker.models.maintenance_record import MaintenanceStatus
from asset_tracker.schemas.item import MaintenanceListResponse, MaintenanceRecordResponse
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.item_store import ItemStore
from asset_tracker.services.lifecycle import OPERATION_ROLES, LifecycleEngine, get_lifecycle_engine

router = APIRouter()


@router.get("/", response_model=MaintenanceListResponse)
def list_maintenance_records(
    record_status: Optional[MaintenanceStatus] = Query(default=None, alias="status"),
    item_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    records, total = store.list_maintenance_records(
        context.tenant_id,
        status=record_status,
        item_id=item_id,
        limit=limit,
        offset=offset,
    )
    return MaintenanceListResponse(
        records=[MaintenanceRecordResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{record_id}", response_model=MaintenanceRecordResponse)
def get_maintenance_record(
    record_id: uuid.UUID,
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    return store.get_maintenance_record(context.tenant_id, record_id)


@router.post("/{record_id}/start", response_model=MaintenanceRecordResponse)
def start_maintenance(
    record_id: uuid.UUID,
    context: AuthContext = Depends(require_role(OPERATION_ROLES["start_maintenance"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    """Begin work on a scheduled record; the item stays in maintenance"""
    return engine.start_maintenance(context, record_id)
