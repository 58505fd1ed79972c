"""
RBAC (Role-Based Access Control) permission system

Roles form a total order: super_admin > tenant_admin > operator > viewer.
The four canonical role sets are derived once from that order.
"""

from typing import Callable, FrozenSet, Iterable

from fastapi import Depends
import structlog

from asset_tracker.core.dependencies import get_auth_context
from asset_tracker.core.exceptions import InsufficientRole
from asset_tracker.models.user import UserRole
from asset_tracker.schemas.token import AuthContext

logger = structlog.get_logger(__name__)


def role_at_least(user_role: UserRole, required_role: UserRole) -> bool:
    """
    Check if user_role meets the required role level.

    Example:
        role_at_least(UserRole.TENANT_ADMIN, UserRole.OPERATOR) -> True
        role_at_least(UserRole.VIEWER, UserRole.OPERATOR) -> False
    """
    return UserRole(user_role).at_least(UserRole(required_role))


def roles_at_least(minimum: UserRole) -> FrozenSet[UserRole]:
    """Every role at or above ``minimum`` in the hierarchy"""
    return frozenset(role for role in UserRole if role_at_least(role, minimum))


SUPER_ADMIN_ROLES = roles_at_least(UserRole.SUPER_ADMIN)
ADMIN_ROLES = roles_at_least(UserRole.TENANT_ADMIN)
OPERATOR_ROLES = roles_at_least(UserRole.OPERATOR)
ANY_ROLE = roles_at_least(UserRole.VIEWER)


def check_role(context: AuthContext, allowed_roles: Iterable[UserRole]) -> AuthContext:
    """Accept iff the resolved role is a member of allowed_roles"""
    allowed = frozenset(allowed_roles)
    if context.role not in allowed:
        logger.warning(
            "Role check failed",
            user_id=str(context.user_id),
            tenant_id=str(context.tenant_id),
            current=context.role.value,
            required=sorted(role.value for role in allowed),
        )
        raise InsufficientRole(required=allowed, current=context.role)
    return context


def require_role(allowed_roles: Iterable[UserRole]) -> Callable:
    """Dependency factory to check the caller's role"""
    allowed = frozenset(allowed_roles)

    async def check_permission(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        return check_role(context, allowed)

    return check_permission


require_super_admin = require_role(SUPER_ADMIN_ROLES)
require_admin = require_role(ADMIN_ROLES)
require_operator = require_role(OPERATOR_ROLES)
require_auth = require_role(ANY_ROLE)
