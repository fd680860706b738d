from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


BillingCycle = Literal["monthly", "yearly", "one-time"]
AccessReason = Literal["GRANTED", "ENTITLEMENT_NOT_FOUND", "ENTITLEMENT_REVOKED"]
EntitlementStatus = Literal["granted", "revoked", "none"]


class ProductCreate(BaseModel):
    id: str = Field(min_length=2, max_length=64, pattern=r"^[a-z0-9][a-z0-9-]*$")
    name: str = Field(min_length=1)
    description: str = ""
    icon: str = "📋"
    category: str | None = None
    features: list[dict[str, Any]] = Field(default_factory=list)
    is_free: bool = False
    price: Decimal = Field(default=Decimal("0"), ge=0)
    billing_cycle: BillingCycle = "monthly"
    is_active: bool = True
    display_in_menu: bool = True
    menu_order: int = 100


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    icon: str | None = None
    features: list[dict[str, Any]] | None = None
    is_free: bool | None = None
    price: Decimal | None = Field(default=None, ge=0)
    billing_cycle: BillingCycle | None = None
    is_active: bool | None = None
    display_in_menu: bool | None = None
    menu_order: int | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    icon: str
    category: str
    features: list[dict[str, Any]]
    is_free: bool
    price: Decimal
    billing_cycle: str
    is_active: bool
    display_in_menu: bool
    menu_order: int
    total_enterprises: int
    active_enterprises: int
    access_count: int
    created_at: datetime
    updated_at: datetime


class UsageSummary(BaseModel):
    distinct_days: list[str]
    distinct_months: list[str]
    total_actions: int


class EntitlementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    product_id: str
    has_access: bool
    granted_at: datetime | None
    granted_by: str | None
    revoked_at: datetime | None
    revoked_by: str | None
    access_link: str
    access_url: str | None = None
    last_accessed: datetime | None
    access_count: int
    row_version: int
    updated_at: datetime
    usage_summary: UsageSummary | None = None


class EntitlementWithToken(EntitlementRead):
    """Operator-only view that exposes the bearer token once after issue."""

    access_token: str


class TenantProductRead(BaseModel):
    product: ProductRead
    has_access: bool
    status: EntitlementStatus
    entitlement: EntitlementRead | None = None


class AccessDecision(BaseModel):
    granted: bool
    reason: AccessReason
    tenant_id: str | None = None
    product_id: str | None = None


class ProductAccessSummary(BaseModel):
    product_id: str
    name: str
    description: str
    icon: str
    category: str
    tenant_id: str
    tenant_name: str


class EntitledTenantRead(BaseModel):
    tenant_id: str
    tenant_name: str
    granted_at: datetime | None
    last_accessed: datetime | None
    access_count: int


class ProductAnalytics(BaseModel):
    product_id: str
    name: str
    total_enterprises: int
    active_enterprises: int
    access_count: int
    entitled_tenant_count: int
    active_organizations: list[str]
    tenants: list[EntitledTenantRead]
