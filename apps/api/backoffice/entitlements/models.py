from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


PRODUCT_CATEGORIES = ("crm", "hrm", "job-portal", "job-board", "project-management", "other")


class Product(Base):
    __tablename__ = "product"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(32), nullable=False, default="📋")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    features: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    billing_cycle: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    display_in_menu: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    menu_order: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    total_enterprises: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    active_enterprises: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("ix_product_menu", "is_active", "menu_order"),)


class ProductActiveTenant(Base):
    """Set of organizations that have used a product at least once."""

    __tablename__ = "product_active_tenant"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id: Mapped[str] = mapped_column(ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    organization_id: Mapped[str] = mapped_column(String(128), nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("product_id", "organization_id", name="uq_product_active_tenant"),)


class Entitlement(Base):
    __tablename__ = "entitlement"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("product.id", ondelete="RESTRICT"), nullable=False)
    has_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    granted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    access_token: Mapped[str] = mapped_column(String(64), nullable=False)
    access_link: Mapped[str] = mapped_column(String(64), nullable=False)
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_actions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", name="uq_entitlement_tenant_product"),
        UniqueConstraint("access_link", name="uq_entitlement_access_link"),
        Index("ix_entitlement_access_token", "access_token"),
        Index("ix_entitlement_product_access", "product_id", "has_access"),
    )


class EntitlementUsagePeriod(Base):
    __tablename__ = "entitlement_usage_period"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entitlement_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("entitlement.id", ondelete="CASCADE"), nullable=False
    )
    period_type: Mapped[str] = mapped_column(String(8), nullable=False)
    period_key: Mapped[str] = mapped_column(String(10), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("entitlement_id", "period_type", "period_key", name="uq_entitlement_usage_period"),
    )
