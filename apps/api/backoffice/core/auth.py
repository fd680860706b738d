from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from backoffice.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    tenant_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.sub != "anonymous"


def _anonymous() -> AuthUser:
    return AuthUser(sub="anonymous", roles=["guest"])


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return _anonymous()

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return _anonymous()

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    # Tenant-side tokens identify the tenant by subject unless a tenant claim is present.
    tenant_claim = payload.get("tenant_id")
    tenant_id = str(tenant_claim) if tenant_claim else subject

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], tenant_id=tenant_id)
