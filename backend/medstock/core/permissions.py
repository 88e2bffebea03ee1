"""
Role checks for API routes.
Roles: admin, institute, pharmacy. Ownership checks live in the services.
"""
from fastapi import Depends

from medstock.api.deps import get_current_user
from medstock.core.audit import AuditLog
from medstock.core.exceptions import BusinessError
from medstock.models.user import User

ROLE_ADMIN = "admin"
ROLE_INSTITUTE = "institute"
ROLE_PHARMACY = "pharmacy"


def role_of(user: User) -> str:
    return (user.role or "").lower()


def is_admin(user: User) -> bool:
    return role_of(user) == ROLE_ADMIN


def require_roles(*roles: str):
    """Dependency factory: the current user must hold one of `roles`."""

    allowed = {r.lower() for r in roles}

    def checker(current_user: User = Depends(get_current_user)) -> User:
        if role_of(current_user) not in allowed:
            AuditLog.log_access_denied(
                "access", "route", None, current_user.id,
                f"Role '{current_user.role}' not in {list(roles)}",
            )
            raise BusinessError.forbidden(f"user {current_user.id} role {current_user.role}")
        return current_user

    return checker
