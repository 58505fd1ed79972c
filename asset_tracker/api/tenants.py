"""
Tenant API endpoints (super admin only)
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select
from typing import List
import structlog
import uuid

from asset_tracker.core.database import get_session
from asset_tracker.core.exceptions import NotFound, StoreUnavailable, ValidationFailed
from asset_tracker.core.permissions import require_super_admin
from asset_tracker.models.tenant import Tenant
from asset_tracker.models.types import utc_now
from asset_tracker.schemas.tenant import TenantCreate, TenantResponse
from asset_tracker.schemas.token import AuthContext

logger = structlog.get_logger(__name__)
router = APIRouter()

SUBDOMAIN_TAKEN = {"field": "subdomain", "message": "Subdomain already in use", "type": "unique"}


def _get_tenant_or_404(session: Session, tenant_id: uuid.UUID) -> Tenant:
    try:
        tenant = session.get(Tenant, tenant_id)
    except SQLAlchemyError as e:
        logger.error(f"Tenant lookup failed: {e}")
        raise StoreUnavailable()
    if not tenant:
        raise NotFound("Tenant not found", resource="tenant")
    return tenant


def _save(session: Session, tenant: Tenant) -> Tenant:
    try:
        session.add(tenant)
        session.commit()
        session.refresh(tenant)
    except IntegrityError:
        session.rollback()
        raise ValidationFailed([SUBDOMAIN_TAKEN])
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to save tenant: {e}")
        raise StoreUnavailable()
    return tenant


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    tenant_data: TenantCreate,
    context: AuthContext = Depends(require_super_admin),
    session: Session = Depends(get_session),
):
    """Create a new tenant"""
    subdomain = tenant_data.subdomain.lower()
    try:
        existing = session.exec(select(Tenant.id).where(Tenant.subdomain == subdomain)).first()
    except SQLAlchemyError as e:
        logger.error(f"Subdomain check failed: {e}")
        raise StoreUnavailable()
    if existing is not None:
        raise ValidationFailed([SUBDOMAIN_TAKEN])

    tenant = _save(session, Tenant(
        name=tenant_data.name,
        subdomain=subdomain,
        contact_email=tenant_data.contact_email.lower(),
    ))
    logger.info("Tenant created", tenant_id=str(tenant.id), created_by=str(context.user_id))
    return tenant


@router.get("/{tenant_id}", response_model=TenantResponse)
def get_tenant(
    tenant_id: uuid.UUID,
    context: AuthContext = Depends(require_super_admin),
    session: Session = Depends(get_session),
):
    """Get tenant by ID"""
    return _get_tenant_or_404(session, tenant_id)


@router.get("/", response_model=List[TenantResponse])
def list_tenants(
    skip: int = 0,
    limit: int = 100,
    context: AuthContext = Depends(require_super_admin),
    session: Session = Depends(get_session),
):
    """List all tenants"""
    try:
        return session.exec(select(Tenant).order_by(Tenant.name).offset(skip).limit(limit)).all()
    except SQLAlchemyError as e:
        logger.error(f"Tenant listing failed: {e}")
        raise StoreUnavailable()


def _set_active(session: Session, tenant_id: uuid.UUID, is_active: bool) -> Tenant:
    tenant = _get_tenant_or_404(session, tenant_id)
    tenant.is_active = is_active
    tenant.updated_at = utc_now()
    return _save(session, tenant)


@router.post("/{tenant_id}/activate", response_model=TenantResponse)
def activate_tenant(
    tenant_id: uuid.UUID,
    context: AuthContext = Depends(require_super_admin),
    session: Session = Depends(get_session),
):
    tenant = _set_active(session, tenant_id, True)
    logger.info("Tenant activated", tenant_id=str(tenant_id), changed_by=str(context.user_id))
    return tenant


@router.post("/{tenant_id}/deactivate", response_model=TenantResponse)
def deactivate_tenant(
    tenant_id: uuid.UUID,
    context: AuthContext = Depends(require_super_admin),
    session: Session = Depends(get_session),
):
    """Deactivate a tenant; every token issued to its users stops working on the next request"""
    tenant = _set_active(session, tenant_id, False)
    logger.info("Tenant deactivated", tenant_id=str(tenant_id), changed_by=str(context.user_id))
    return tenant
