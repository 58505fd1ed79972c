"""
Authentication dependencies for FastAPI
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session
from typing import Optional
import structlog

from asset_tracker.core.auth import verify_token
from asset_tracker.core.database import get_session
from asset_tracker.core.exceptions import CredentialInvalid, CredentialMissing, PrincipalInactive
from asset_tracker.schemas.token import AuthContext
from asset_tracker.services.credential_store import CredentialStore
from asset_tracker.services.item_store import ItemStore

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)


def get_credential_store(session: Session = Depends(get_session)) -> CredentialStore:
    return CredentialStore(session)


def resolve_identity(token: Optional[str], credential_store: CredentialStore) -> AuthContext:
    """
    Turn a bearer token into the request's identity.

    The user and tenant are re-read on every call so that deactivation takes
    effect before the token expires.
    """
    if not token:
        raise CredentialMissing()

    claims = verify_token(token)

    record = credential_store.find_user_with_tenant(claims.user_id)
    if record is None or not record.user.is_active:
        logger.info("Rejected token for missing or inactive user", user_id=str(claims.user_id))
        raise PrincipalInactive("User not found or inactive")

    if record.user.tenant_id != claims.tenant_id:
        raise CredentialInvalid("Token tenant does not match user")

    if not record.tenant_active:
        logger.info("Rejected token for inactive tenant", tenant_id=str(record.tenant.id))
        raise PrincipalInactive("Tenant account is inactive")

    # Role comes from the store, not the token, so demotions apply immediately
    return AuthContext(
        user_id=record.user.id,
        email=record.user.email,
        role=record.user.role,
        tenant_id=record.user.tenant_id,
        tenant_name=record.tenant.name,
    )


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    credential_store: CredentialStore = Depends(get_credential_store),
) -> AuthContext:
    """Resolve the authenticated identity and tenant for the current request"""
    token = credentials.credentials if credentials else None
    context = resolve_identity(token, credential_store)
    logger.debug(f"User authenticated: {context.user_id}")
    return context


def get_item_store(session: Session = Depends(get_session)) -> ItemStore:
    return ItemStore(session)
