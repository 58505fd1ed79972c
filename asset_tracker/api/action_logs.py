"""
Action log API endpoints
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
import uuid

from asset_tracker.core.dependencies import get_item_store
from asset_tracker.core.permissions import require_auth
from asset_tracker.models.action_log import ActionType
from asset_tracker.schemas.item import ActionLogListResponse, ActionLogResponse, ActionLogSummary
from asset_tracker.schemas.requests import IsoDatetime
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.item_store import ItemStore

router = APIRouter()


@router.get("/", response_model=ActionLogListResponse)
def list_action_logs(
    item_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    action_type: Optional[ActionType] = None,
    start_date: IsoDatetime = None,
    end_date: IsoDatetime = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    """Audit trail for the caller's tenant, newest first"""
    logs, total = store.list_action_logs(
        context.tenant_id,
        item_id=item_id,
        user_id=user_id,
        action_type=action_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return ActionLogListResponse(
        logs=[ActionLogResponse.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats/summary", response_model=ActionLogSummary)
def get_action_log_summary(
    start_date: IsoDatetime = None,
    end_date: IsoDatetime = None,
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    """Action counts by type and the latest activity"""
    summary = store.action_log_summary(context.tenant_id, start_date=start_date, end_date=end_date)
    return ActionLogSummary(
        total_actions=summary["total_actions"],
        actions_by_type=summary["actions_by_type"],
        recent_activity=[ActionLogResponse.model_validate(log) for log in summary["recent_activity"]],
    )
