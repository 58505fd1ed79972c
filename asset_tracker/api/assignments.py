"""
Assignment API endpoints (read models, notes and the overdue sweep)
"""

from fastapi import APIRouter, Body, Depends, Query
from typing import Any, Optional
import structlog
import uuid

from asset_tracker.core.dependencies import get_item_store
from asset_tracker.core.permissions import require_admin, require_auth
from asset_tracker.models.assignment import AssignmentStatus
from asset_tracker.models.types import utc_now
from asset_tracker.schemas.item import (
    AssignmentListResponse,
    AssignmentNotesUpdate,
    AssignmentResponse,
    AssignmentStats,
)
from asset_tracker.schemas.requests import validate_payload
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.item_store import ItemStore

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", response_model=AssignmentListResponse)
def list_assignments(
    assignment_status: Optional[AssignmentStatus] = Query(default=None, alias="status"),
    assigned_to: Optional[uuid.UUID] = None,
    item_id: Optional[uuid.UUID] = None,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    assignments, total = store.list_assignments(
        context.tenant_id,
        status=assignment_status,
        assigned_to=assigned_to,
        item_id=item_id,
        limit=limit,
        offset=offset,
    )
    return AssignmentListResponse(
        assignments=[AssignmentResponse.model_validate(a) for a in assignments],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=AssignmentStats)
def get_assignment_stats(
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    return AssignmentStats(**store.assignment_stats(context.tenant_id))


@router.post("/mark-overdue")
def mark_overdue_assignments(
    context: AuthContext = Depends(require_admin),
    store: ItemStore = Depends(get_item_store),
):
    """Flag active assignments past their expected return date"""
    updated = store.mark_overdue(context.tenant_id, utc_now())
    logger.info("Overdue assignments marked", tenant_id=str(context.tenant_id), count=updated)
    return {"updated": updated}


@router.get("/{assignment_id}", response_model=AssignmentResponse)
def get_assignment(
    assignment_id: uuid.UUID,
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    return store.get_assignment(context.tenant_id, assignment_id)


@router.put("/{assignment_id}", response_model=AssignmentResponse)
def update_assignment_notes(
    assignment_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_admin),
    store: ItemStore = Depends(get_item_store),
):
    """Edit assignment notes; custody changes go through the lifecycle endpoints"""
    changes = validate_payload(AssignmentNotesUpdate, payload)
    assignment = store.update_assignment_notes(context.tenant_id, assignment_id, changes.notes)
    logger.info("Assignment notes updated", assignment_id=str(assignment.id), updated_by=str(context.user_id))
    return assignment
