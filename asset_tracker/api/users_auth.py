"""
User authentication API endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
import structlog

from asset_tracker.core.auth import issue_tokens, validate_refresh_token
from asset_tracker.core.database import get_session
from asset_tracker.core.dependencies import get_credential_store
from asset_tracker.core.exceptions import InvalidCredentials, PrincipalInactive, StoreUnavailable
from asset_tracker.core.permissions import require_auth
from asset_tracker.core.security import verify_password
from asset_tracker.models.types import utc_now
from asset_tracker.schemas.token import AuthContext, LoginRequest, RefreshRequest, TokenResponse
from asset_tracker.schemas.user import CurrentUserResponse, UserResponse
from asset_tracker.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/login", response_model=TokenResponse)
def login_user(
    login_data: LoginRequest,
    credential_store: CredentialStore = Depends(get_credential_store),
    session: Session = Depends(get_session),
):
    """Login user within a tenant"""
    tenant = credential_store.find_tenant_by_subdomain(login_data.tenant_subdomain)
    user = None
    if tenant is not None:
        user = credential_store.find_user_by_tenant_and_email(tenant.id, login_data.email)

    # Same answer, and the same hashing work, for unknown tenant, unknown user and wrong password
    password_ok = verify_password(login_data.password, user.password_hash if user is not None else None)
    if user is None or not password_ok:
        logger.info("Login failed", tenant_subdomain=login_data.tenant_subdomain)
        raise InvalidCredentials()

    if not user.is_active:
        raise PrincipalInactive("User account is inactive")
    if not tenant.is_active:
        raise PrincipalInactive("Tenant account is inactive")

    # Update last login
    user.last_login_at = utc_now()
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to record login: {e}")
        raise StoreUnavailable()

    logger.info("User logged in", user_id=str(user.id), tenant_id=str(tenant.id))

    return TokenResponse(**issue_tokens(user), user=UserResponse.model_validate(user))


@router.post("/refresh", response_model=TokenResponse)
def refresh_access_token(
    refresh_data: RefreshRequest,
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """Exchange a refresh token for a new access token"""
    claims = validate_refresh_token(refresh_data.refresh_token, credential_store)

    record = credential_store.find_user_with_tenant(claims.user_id)
    if record is None or not record.tenant_active:
        raise PrincipalInactive("Tenant account is inactive")

    # Role is taken from the store so a demotion shows up in the new token
    tokens = issue_tokens(record.user, include_refresh=False)
    logger.info("Access token refreshed", user_id=str(record.user.id))
    return TokenResponse(**tokens, user=UserResponse.model_validate(record.user))


@router.get("/me", response_model=CurrentUserResponse)
def get_current_user_info(
    context: AuthContext = Depends(require_auth),
    credential_store: CredentialStore = Depends(get_credential_store),
):
    """Get current user info"""
    record = credential_store.find_user_with_tenant(context.user_id)
    if record is None:
        raise PrincipalInactive("User not found or inactive")

    return CurrentUserResponse(
        user=UserResponse.model_validate(record.user),
        tenant_id=context.tenant_id,
        tenant_name=context.tenant_name,
    )
