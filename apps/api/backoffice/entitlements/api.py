from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from backoffice.core.auth import AuthUser
from backoffice.core.database import get_db
from backoffice.core.rbac import TENANT_ROLE, require_authenticated, require_roles
from backoffice.entitlements.repository import product_repository
from backoffice.entitlements.schemas import (
    AccessDecision,
    EntitlementRead,
    EntitlementWithToken,
    ProductAccessSummary,
    ProductAnalytics,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    TenantProductRead,
)
from backoffice.entitlements.service import entitlement_manager, product_service
from backoffice.entitlements.usage import usage_tracker
from backoffice.errors import ForbiddenError, NotFoundError
from backoffice.platform.security.context import AuthContext
from backoffice.platform.security.dependencies import get_auth_context


router = APIRouter(prefix="/entitlements", tags=["entitlements"])
products_router = APIRouter(prefix="/products", tags=["products"])


@router.post("/{tenant_id}/{product_id}/grant", response_model=EntitlementWithToken)
def grant_entitlement(
    tenant_id: str,
    product_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> EntitlementWithToken:
    return entitlement_manager.grant(db, ctx, tenant_id, product_id)


@router.post("/{tenant_id}/{product_id}/revoke", response_model=EntitlementRead)
def revoke_entitlement(
    tenant_id: str,
    product_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> EntitlementRead:
    return entitlement_manager.revoke(db, ctx, tenant_id, product_id)


@router.post("/{tenant_id}/{product_id}/regenerate", response_model=EntitlementWithToken)
def regenerate_entitlement(
    tenant_id: str,
    product_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> EntitlementWithToken:
    return entitlement_manager.regenerate(db, ctx, tenant_id, product_id)


@router.get("/{tenant_id}", response_model=list[TenantProductRead])
def list_tenant_entitlements(
    tenant_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[TenantProductRead]:
    return entitlement_manager.list_for_tenant(db, ctx, tenant_id)


@products_router.get("/access/{access_link}", response_model=ProductAccessSummary)
def lookup_access_link(access_link: str, db: Session = Depends(get_db)) -> ProductAccessSummary:
    return entitlement_manager.lookup_access_link(db, access_link)


@products_router.get("/verify/{product_id}", response_model=AccessDecision)
def verify_product_access(
    product_id: str,
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_authenticated()),
    __: AuthUser = Depends(require_roles(TENANT_ROLE)),
    ctx: AuthContext = Depends(get_auth_context),
) -> AccessDecision:
    if not ctx.tenant_id:
        raise ForbiddenError("A tenant session is required")

    product = product_repository.get(db, product_id)
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": product_id})
    if not product.is_active:
        raise NotFoundError("Product is not active", code="PRODUCT_INACTIVE", details={"product_id": product_id})

    decision = entitlement_manager.verify(db, ctx.tenant_id, product_id)
    if decision.granted:
        usage_tracker.record_access(db, ctx, ctx.tenant_id, product_id)
    return decision


@products_router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProductRead:
    return product_service.create_product(db, ctx, payload)


@products_router.get("", response_model=list[ProductRead])
def list_products(
    active: bool | None = Query(default=None),
    category: str | None = Query(default=None),
    menu_only: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ProductRead]:
    return product_service.list_products(db, active=active, category=category, menu_only=menu_only)


@products_router.get("/{product_id}", response_model=ProductRead)
def get_product(product_id: str, db: Session = Depends(get_db)) -> ProductRead:
    return product_service.get_product(db, product_id)


@products_router.patch("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProductRead:
    return product_service.update_product(db, ctx, product_id, payload)


@products_router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response:
    product_service.delete_product(db, ctx, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@products_router.get("/{product_id}/analytics", response_model=ProductAnalytics)
def product_analytics(
    product_id: str,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ProductAnalytics:
    return product_service.analytics(db, ctx, product_id)
