from __future__ import annotations

from fastapi import Depends, Request

from backoffice.context import get_correlation_id
from backoffice.core.auth import AuthUser, get_current_user
from backoffice.platform.security.context import AuthContext


def get_auth_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return AuthContext(
        user_id=auth_user.sub,
        tenant_id=auth_user.tenant_id,
        correlation_id=correlation_id,
        roles=[str(role) for role in auth_user.roles],
    )
