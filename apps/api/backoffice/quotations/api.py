from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from backoffice.core.auth import AuthUser
from backoffice.core.database import get_db
from backoffice.core.rbac import OPERATOR_ROLE, require_roles
from backoffice.platform.security.context import AuthContext
from backoffice.platform.security.dependencies import get_auth_context
from backoffice.quotations.schemas import (
    QuotationCreate,
    QuotationRead,
    QuotationStats,
    QuotationStatus,
    QuotationStatusUpdate,
    ServiceCreate,
    ServiceDeleteResult,
    ServiceRead,
)
from backoffice.quotations.service import quotation_service, service_catalog


router = APIRouter(prefix="/quotations", tags=["quotations"])
services_router = APIRouter(prefix="/services", tags=["services"])


@services_router.post("", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    payload: ServiceCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ServiceRead:
    return service_catalog.create_service(db, ctx, payload)


@services_router.get("", response_model=list[ServiceRead])
def list_services(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[ServiceRead]:
    return service_catalog.list_services(db, include_inactive=include_inactive)


@services_router.delete("/{service_id}", response_model=ServiceDeleteResult)
def delete_service(
    service_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ServiceDeleteResult:
    return service_catalog.delete_service(db, ctx, service_id)


@router.post("", response_model=QuotationRead, status_code=status.HTTP_201_CREATED)
def create_quotation(
    payload: QuotationCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> QuotationRead:
    return quotation_service.create_quotation(db, ctx, payload)


@router.get("", response_model=list[QuotationRead])
def list_quotations(
    status_filter: QuotationStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[QuotationRead]:
    return quotation_service.list_quotations(db, ctx, status=status_filter)


@router.get("/stats", response_model=QuotationStats)
def quotation_stats(db: Session = Depends(get_db), ctx: AuthContext = Depends(get_auth_context)) -> QuotationStats:
    return quotation_service.stats(db, ctx)


@router.get("/{quotation_id}", response_model=QuotationRead)
def get_quotation(
    quotation_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> QuotationRead:
    return quotation_service.get_quotation(db, ctx, quotation_id)


@router.put("/{quotation_id}/status", response_model=QuotationRead)
def update_quotation_status(
    quotation_id: uuid.UUID,
    payload: QuotationStatusUpdate,
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_roles(OPERATOR_ROLE)),
    ctx: AuthContext = Depends(get_auth_context),
) -> QuotationRead:
    return quotation_service.transition(db, ctx, quotation_id, payload)
