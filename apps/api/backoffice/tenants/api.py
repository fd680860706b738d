from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.platform.security.context import AuthContext
from backoffice.platform.security.dependencies import get_auth_context
from backoffice.tenants.schemas import TenantCreate, TenantRead
from backoffice.tenants.service import tenant_service


router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: TenantCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TenantRead:
    return tenant_service.create_tenant(db, ctx, payload)


@router.get("", response_model=list[TenantRead])
def list_tenants(db: Session = Depends(get_db), ctx: AuthContext = Depends(get_auth_context)) -> list[TenantRead]:
    return tenant_service.list_tenants(db, ctx)


@router.get("/{tenant_id}", response_model=TenantRead)
def get_tenant(
    tenant_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TenantRead:
    return tenant_service.get_tenant(db, ctx, tenant_id)
