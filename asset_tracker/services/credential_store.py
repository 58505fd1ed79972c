"""
Credential store adapter - user and tenant lookups for authentication
"""

from dataclasses import dataclass
from typing import Optional
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
import structlog

from asset_tracker.core.exceptions import StoreUnavailable
from asset_tracker.models.tenant import Tenant
from asset_tracker.models.user import User

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UserWithTenant:
    user: User
    tenant: Tenant

    @property
    def tenant_active(self) -> bool:
        return self.tenant.is_active


class CredentialStore:
    """
    Read-only lookups used by login, token revalidation and refresh.

    ``None`` means not found; an unreachable store raises ``StoreUnavailable``.
    """

    def __init__(self, session: Session):
        self.session = session

    def find_user_with_tenant(self, user_id: uuid.UUID) -> Optional[UserWithTenant]:
        try:
            row = self.session.exec(
                select(User, Tenant)
                .join(Tenant, Tenant.id == User.tenant_id)
                .where(User.id == user_id)
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Credential lookup failed: {e}")
            raise StoreUnavailable()

        if row is None:
            return None
        user, tenant = row
        return UserWithTenant(user=user, tenant=tenant)

    def find_user_by_tenant_and_email(self, tenant_id: uuid.UUID, email: str) -> Optional[User]:
        try:
            return self.session.exec(
                select(User).where(
                    User.tenant_id == tenant_id,
                    User.email == email.lower()
                )
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Credential lookup failed: {e}")
            raise StoreUnavailable()

    def find_tenant_by_subdomain(self, subdomain: str) -> Optional[Tenant]:
        try:
            return self.session.exec(
                select(Tenant).where(Tenant.subdomain == subdomain.lower())
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Tenant lookup failed: {e}")
            raise StoreUnavailable()
