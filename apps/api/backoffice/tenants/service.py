from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice import audit
from backoffice.errors import ConflictError, ForbiddenError, NotFoundError
from backoffice.platform.security.context import AuthContext
from backoffice.tenants.models import Tenant
from backoffice.tenants.schemas import TenantCreate, TenantRead

logger = logging.getLogger("backoffice.tenants")


def get_tenant_or_404(session: Session, tenant_id: str) -> Tenant:
    tenant = session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found", code="TENANT_NOT_FOUND", details={"tenant_id": tenant_id})
    return tenant


@dataclass(slots=True)
class TenantService:
    def create_tenant(self, session: Session, ctx: AuthContext, dto: TenantCreate) -> TenantRead:
        if not ctx.is_operator:
            raise ForbiddenError("Only operators can register tenants")
        if session.get(Tenant, dto.id) is not None:
            raise ConflictError("Tenant already exists", code="TENANT_EXISTS", details={"tenant_id": dto.id})

        tenant = Tenant(**dto.model_dump(mode="python"))
        session.add(tenant)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("Tenant already exists", code="TENANT_EXISTS", details={"tenant_id": dto.id})
        session.refresh(tenant)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="tenant",
            entity_id=tenant.id,
            action="create",
            before=None,
            after={"contact_name": tenant.contact_name, "company_name": tenant.company_name},
            correlation_id=ctx.correlation_id,
        )
        logger.info("tenant.created", extra={"tenant_id": tenant.id, "actor": ctx.user_id})
        return TenantRead.model_validate(tenant)

    def get_tenant(self, session: Session, ctx: AuthContext, tenant_id: str) -> TenantRead:
        if not ctx.is_operator and ctx.tenant_id != tenant_id:
            raise ForbiddenError("Tenants can only read their own record")
        return TenantRead.model_validate(get_tenant_or_404(session, tenant_id))

    def list_tenants(self, session: Session, ctx: AuthContext) -> list[TenantRead]:
        if not ctx.is_operator:
            raise ForbiddenError("Only operators can list tenants")
        rows = session.scalars(select(Tenant).order_by(Tenant.created_at.asc(), Tenant.id.asc())).all()
        return [TenantRead.model_validate(row) for row in rows]


tenant_service = TenantService()
