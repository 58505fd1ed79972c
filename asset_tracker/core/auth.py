"""
JWT Authentication utilities

Access and refresh tokens are self-contained: nothing is stored server side,
so any worker holding the signing secret can verify them.
"""

from datetime import datetime, timedelta
from jose import ExpiredSignatureError, JWTError, jwt
from typing import Dict, Optional, Tuple
import uuid
import structlog

from asset_tracker.core.config import get_settings
from asset_tracker.core.exceptions import CredentialExpired, CredentialInvalid, StoreUnavailable
from asset_tracker.models.types import utc_now
from asset_tracker.models.user import UserRole
from asset_tracker.schemas.token import TokenClaims

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _encode(claims: Dict, secret: str, expires_delta: timedelta) -> Tuple[str, datetime]:
    settings = get_settings()
    issued_at = utc_now()
    expire = issued_at + expires_delta

    to_encode = {**claims, "exp": expire, "iat": issued_at}
    encoded_jwt = jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt, expire


def _user_claims(user_id: uuid.UUID, email: str, role: UserRole, tenant_id: uuid.UUID) -> Dict:
    return {
        "sub": str(user_id),
        "email": email,
        "role": UserRole(role).value,
        "tenant_id": str(tenant_id),
    }


def create_access_token(
    user_id: uuid.UUID,
    email: str,
    role: UserRole,
    tenant_id: uuid.UUID,
    expires_delta: Optional[timedelta] = None
) -> Tuple[str, datetime]:
    """Create JWT access token with user claims, returns the token and its expiry"""
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = _user_claims(user_id, email, role, tenant_id)
    claims["type"] = ACCESS_TOKEN_TYPE
    return _encode(claims, settings.JWT_SECRET_KEY, expires_delta)


def create_refresh_token(
    user_id: uuid.UUID,
    email: str,
    role: UserRole,
    tenant_id: uuid.UUID,
    expires_delta: Optional[timedelta] = None
) -> Tuple[str, datetime]:
    """Create a longer lived refresh token signed with the refresh secret"""
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_REFRESH_TOKEN_EXPIRE_MINUTES)

    claims = _user_claims(user_id, email, role, tenant_id)
    claims["type"] = REFRESH_TOKEN_TYPE
    return _encode(claims, settings.refresh_secret_key, expires_delta)


def issue_tokens(user, include_refresh: bool = True) -> Dict:
    """Issue an access token (and optionally a refresh token) for a user record"""
    access_token, expires_at = create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role,
        tenant_id=user.tenant_id,
    )
    tokens = {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_at": expires_at,
    }
    if include_refresh:
        refresh_token, refresh_expires_at = create_refresh_token(
            user_id=user.id,
            email=user.email,
            role=user.role,
            tenant_id=user.tenant_id,
        )
        tokens["refresh_token"] = refresh_token
        tokens["refresh_expires_at"] = refresh_expires_at
    return tokens


def decode_token(token: str, secret: str, expected_type: str) -> TokenClaims:
    """
    Verify signature and expiry, then parse the claims.

    Raises:
        CredentialExpired: signature is valid but the token is past its expiry
        CredentialInvalid: bad signature, malformed token or unexpected claims
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise CredentialExpired()
    except JWTError:
        raise CredentialInvalid()

    if payload.get("type") != expected_type:
        raise CredentialInvalid(f"Expected {expected_type} token")

    try:
        return TokenClaims.model_validate(payload)
    except ValueError:
        raise CredentialInvalid("Token claims are malformed")


def verify_token(token: str) -> TokenClaims:
    """Verify an access token and return its claims"""
    settings = get_settings()
    return decode_token(token, settings.JWT_SECRET_KEY, ACCESS_TOKEN_TYPE)


def validate_refresh_token(refresh_token: str, credential_store) -> TokenClaims:
    """
    Verify a refresh token and confirm its user still exists and is active.

    Any failure of the live lookup, including the store being unreachable,
    is treated as an invalid token.
    """
    settings = get_settings()
    try:
        claims = decode_token(refresh_token, settings.refresh_secret_key, REFRESH_TOKEN_TYPE)
    except (CredentialExpired, CredentialInvalid) as e:
        logger.info("Refresh token rejected", reason=e.code)
        raise CredentialInvalid("Invalid refresh token")

    try:
        record = credential_store.find_user_with_tenant(claims.user_id)
    except StoreUnavailable:
        logger.warning("Refresh token lookup failed", user_id=str(claims.user_id))
        raise CredentialInvalid("Invalid refresh token")

    if record is None or not record.user.is_active:
        raise CredentialInvalid("Invalid refresh token")

    return claims
