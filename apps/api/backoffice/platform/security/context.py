from __future__ import annotations

from dataclasses import dataclass, field

from backoffice.core.rbac import OPERATOR_ROLE, TENANT_ROLE


@dataclass(slots=True)
class AuthContext:
    """Caller identity resolved by the identity layer for one request."""

    user_id: str
    tenant_id: str | None = None
    correlation_id: str | None = None
    roles: list[str] = field(default_factory=list)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id) and self.user_id != "anonymous"

    @property
    def is_operator(self) -> bool:
        return OPERATOR_ROLE in self.roles

    @property
    def is_tenant(self) -> bool:
        return TENANT_ROLE in self.roles
