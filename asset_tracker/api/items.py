"""
Item (asset) API endpoints

Registration and descriptive updates only; status changes go through the
lifecycle endpoints under /nfc.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from typing import Any, List, Optional
import structlog
import uuid

from asset_tracker.core.dependencies import get_item_store
from asset_tracker.core.permissions import require_admin, require_auth
from asset_tracker.models.item import ItemStatus
from asset_tracker.schemas.item import (
    ActionLogListResponse,
    ActionLogResponse,
    CategoryCount,
    ItemCreate,
    ItemListResponse,
    ItemResponse,
    ItemUpdate,
)
from asset_tracker.schemas.requests import validate_payload
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.item_store import ItemStore

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", response_model=ItemListResponse)
def list_items(
    item_status: Optional[ItemStatus] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    """List items in the caller's tenant"""
    items, total = store.list_items(
        context.tenant_id,
        status=item_status,
        category=category,
        search=search,
        limit=limit,
        offset=offset,
    )
    return ItemListResponse(
        items=[ItemResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
def register_item(
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_admin),
    store: ItemStore = Depends(get_item_store),
):
    """Register a new item; it starts available"""
    item_data = validate_payload(ItemCreate, payload)
    item = store.create_item(context.tenant_id, **item_data.model_dump(exclude_none=True))
    logger.info("Item registered", item_id=str(item.id), tenant_id=str(context.tenant_id))
    return item


@router.get("/categories", response_model=List[CategoryCount])
def list_categories(
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    """Categories in use in the caller's tenant with item counts"""
    return [
        CategoryCount(category=category, count=count)
        for category, count in store.item_categories(context.tenant_id)
    ]


@router.get("/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: uuid.UUID,
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    return store.get_item(context.tenant_id, item_id)


@router.patch("/{item_id}", response_model=ItemResponse)
def update_item(
    item_id: uuid.UUID,
    payload: Any = Body(default=None),
    context: AuthContext = Depends(require_admin),
    store: ItemStore = Depends(get_item_store),
):
    """Update descriptive fields of an item"""
    changes = validate_payload(ItemUpdate, payload).model_dump(exclude_unset=True)
    item = store.get_item(context.tenant_id, item_id)
    item = store.update_item_details(item, changes)
    logger.info("Item updated", item_id=str(item.id), fields=sorted(changes))
    return item


@router.get("/{item_id}/history", response_model=ActionLogListResponse)
def get_item_history(
    item_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: AuthContext = Depends(require_auth),
    store: ItemStore = Depends(get_item_store),
):
    """Action log of a single item, newest first"""
    item = store.get_item(context.tenant_id, item_id)
    logs, total = store.list_action_logs(context.tenant_id, item_id=item.id, limit=limit, offset=offset)
    return ActionLogListResponse(
        logs=[ActionLogResponse.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )
