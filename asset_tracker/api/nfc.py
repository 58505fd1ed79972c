"""
NFC lifecycle API endpoints

Each handler authenticates and checks the caller's role, validates the raw
body, then hands off to the lifecycle engine. Payloads are camelCase.
"""

from fastapi import APIRouter, Body, Depends
from typing import Any
import structlog
import uuid

from asset_tracker.core.permissions import require_role
from asset_tracker.schemas.item import (
    ActionLogResponse,
    AssignmentResponse,
    ItemLookupResponse,
    ItemResponse,
    ItemTransitionResponse,
    MaintenanceRecordResponse,
)
from asset_tracker.schemas.requests import (
    validate_assignment,
    validate_cancel_maintenance,
    validate_check_in_out,
    validate_complete_maintenance,
    validate_maintenance,
    validate_nfc_lookup,
    validate_retire,
)
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.lifecycle import OPERATION_ROLES, LifecycleEngine, get_lifecycle_engine

logger = structlog.get_logger(__name__)
router = APIRouter()


def _transition_response(message, item, assignment=None, maintenance=None) -> ItemTransitionResponse:
    return ItemTransitionResponse(
        message=message,
        item=ItemResponse.model_validate(item),
        assignment=AssignmentResponse.model_validate(assignment) if assignment else None,
        maintenance=MaintenanceRecordResponse.model_validate(maintenance) if maintenance else None,
    )


@router.get("/{tag_uid}/lookup", response_model=ItemLookupResponse)
def lookup_item(
    tag_uid: str,
    context: AuthContext = Depends(require_role(OPERATION_ROLES["lookup"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    """Resolve a scanned NFC tag to its item and current custody"""
    request = validate_nfc_lookup({"tagUid": tag_uid})
    result = engine.lookup(context, request)
    logger.info("NFC lookup", tenant_id=str(context.tenant_id), item_id=str(result.item.id))

    return ItemLookupResponse(
        item=ItemResponse.model_validate(result.item),
        assignment=AssignmentResponse.model_validate(result.assignment) if result.assignment else None,
        maintenance=MaintenanceRecordResponse.model_validate(result.maintenance) if result.maintenance else None,
        recent_actions=[ActionLogResponse.model_validate(log) for log in result.recent_actions],
    )


@router.post("/{item_id}/assign", response_model=ItemTransitionResponse)
def assign_item(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["assign"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    request = validate_assignment(payload)
    assignment = engine.assign_item(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Item assigned", item, assignment=assignment)


@router.post("/{item_id}/checkout", response_model=ItemTransitionResponse)
def check_out_item(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["checkout"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    """Self-service checkout; the caller is recorded as the assigning user"""
    request = validate_check_in_out(payload)
    assignment = engine.check_out_item(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Item checked out", item, assignment=assignment)


@router.post("/{item_id}/checkin", response_model=ItemTransitionResponse)
def check_in_item(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["checkin"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    request = validate_check_in_out(payload)
    assignment = engine.check_in_item(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Item checked in", item, assignment=assignment)


@router.post("/{item_id}/maintenance", response_model=ItemTransitionResponse)
def schedule_maintenance(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["schedule_maintenance"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    request = validate_maintenance(payload)
    record = engine.schedule_maintenance(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Maintenance scheduled", item, maintenance=record)


@router.post("/{item_id}/maintenance/complete", response_model=ItemTransitionResponse)
def complete_maintenance(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["complete_maintenance"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    request = validate_complete_maintenance(payload)
    record = engine.complete_maintenance(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Maintenance completed", item, maintenance=record)


@router.post("/{item_id}/maintenance/cancel", response_model=ItemTransitionResponse)
def cancel_maintenance(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["cancel_maintenance"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    request = validate_cancel_maintenance(payload)
    record = engine.cancel_maintenance(context, item_id, request)
    item = engine.store.get_item(context.tenant_id, item_id)
    return _transition_response("Maintenance cancelled", item, maintenance=record)


@router.post("/{item_id}/retire", response_model=ItemTransitionResponse)
def retire_item(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_role(OPERATION_ROLES["retire"])),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
):
    """Take an item out of circulation for good"""
    request = validate_retire(payload)
    item = engine.retire_item(context, item_id, request)
    return _transition_response("Item retired", item)
