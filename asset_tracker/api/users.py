"""
Users API endpoints, scoped to the caller's tenant
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select
from typing import List, Optional
import structlog
import uuid

from asset_tracker.core.database import get_session
from asset_tracker.core.exceptions import InsufficientRole, NotFound, StoreUnavailable, ValidationFailed
from asset_tracker.core.permissions import SUPER_ADMIN_ROLES, require_admin, require_auth
from asset_tracker.core.security import hash_password
from asset_tracker.models.user import User, UserRole
from asset_tracker.models.types import utc_now
from asset_tracker.schemas.token import AuthContext
from asset_tracker.schemas.user import UserCreate, UserResponse

logger = structlog.get_logger(__name__)
router = APIRouter()

EMAIL_TAKEN = {"field": "email", "message": "Email already registered", "type": "unique"}


def _get_user_or_404(session: Session, tenant_id: uuid.UUID, user_id: uuid.UUID) -> User:
    try:
        user = session.exec(
            select(User).where(User.id == user_id, User.tenant_id == tenant_id)
        ).first()
    except SQLAlchemyError as e:
        logger.error(f"User lookup failed: {e}")
        raise StoreUnavailable()
    if not user:
        raise NotFound("User not found", resource="user")
    return user


def _save(session: Session, user: User) -> User:
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except IntegrityError:
        session.rollback()
        raise ValidationFailed([EMAIL_TAKEN])
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to save user: {e}")
        raise StoreUnavailable()
    return user


@router.get("/", response_model=List[UserResponse])
def list_users(
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 100,
    context: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """List users in the caller's tenant"""
    query = select(User).where(User.tenant_id == context.tenant_id)
    if role is not None:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active == is_active)

    try:
        return session.exec(query.order_by(User.email).offset(skip).limit(limit)).all()
    except SQLAlchemyError as e:
        logger.error(f"User listing failed: {e}")
        raise StoreUnavailable()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: UserCreate,
    context: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Create a user inside the caller's tenant"""
    if user_data.role == UserRole.SUPER_ADMIN and context.role not in SUPER_ADMIN_ROLES:
        raise InsufficientRole(required=SUPER_ADMIN_ROLES, current=context.role)

    email = user_data.email.lower()
    try:
        existing = session.exec(
            select(User.id).where(User.tenant_id == context.tenant_id, User.email == email)
        ).first()
    except SQLAlchemyError as e:
        logger.error(f"Email check failed: {e}")
        raise StoreUnavailable()
    if existing is not None:
        raise ValidationFailed([EMAIL_TAKEN])

    user = _save(session, User(
        tenant_id=context.tenant_id,
        email=email,
        password_hash=hash_password(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        role=user_data.role,
        is_active=True,
    ))
    logger.info("User created", user_id=str(user.id), tenant_id=str(context.tenant_id), role=user.role.value)
    return user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: uuid.UUID,
    context: AuthContext = Depends(require_auth),
    session: Session = Depends(get_session),
):
    return _get_user_or_404(session, context.tenant_id, user_id)


def _set_active(session: Session, context: AuthContext, user_id: uuid.UUID, is_active: bool) -> User:
    user = _get_user_or_404(session, context.tenant_id, user_id)
    if user.role == UserRole.SUPER_ADMIN and context.role not in SUPER_ADMIN_ROLES:
        raise InsufficientRole(required=SUPER_ADMIN_ROLES, current=context.role)

    user.is_active = is_active
    user.updated_at = utc_now()
    user = _save(session, user)
    logger.info(
        "User activation changed",
        user_id=str(user_id),
        is_active=is_active,
        changed_by=str(context.user_id),
    )
    return user


@router.post("/{user_id}/activate", response_model=UserResponse)
def activate_user(
    user_id: uuid.UUID,
    context: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _set_active(session, context, user_id, True)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(
    user_id: uuid.UUID,
    context: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    """Deactivate a user; their tokens stop working on the next request"""
    return _set_active(session, context, user_id, False)
