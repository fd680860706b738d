from collections.abc import Callable

from fastapi import Depends

from backoffice.core.auth import AuthUser, get_current_user
from backoffice.errors import ForbiddenError, UnauthenticatedError

OPERATOR_ROLE = "superadmin"
TENANT_ROLE = "admin"


def require_roles(*roles: str) -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if not any(role in user.roles for role in roles):
            raise ForbiddenError(f"Requires one of roles: {', '.join(roles)}")
        return user

    return checker


def require_authenticated() -> Callable[[AuthUser], AuthUser]:
    async def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if not user.is_authenticated:
            raise UnauthenticatedError("Authentication required")
        return user

    return checker
