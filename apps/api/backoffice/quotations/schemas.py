from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


QuotationStatus = Literal["pending", "approved", "rejected", "completed"]


class ServiceCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    price: Decimal = Field(default=Decimal("0"), ge=0)
    category: str = "general"
    is_active: bool = True


class ServiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str
    price: Decimal
    category: str
    is_active: bool
    created_at: datetime


class ServiceDeleteResult(BaseModel):
    id: UUID
    deleted: bool
    deactivated: bool
    message: str


class EnterpriseDetails(BaseModel):
    company_name: str | None = None
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None


class QuotationCreate(BaseModel):
    service_id: UUID
    request_details: str = Field(min_length=1)
    custom_requirements: str | None = None
    requested_price: Decimal | None = Field(default=None, gt=0)
    enterprise_details: EnterpriseDetails | None = None


class QuotationStatusUpdate(BaseModel):
    status: QuotationStatus
    final_price: Decimal | None = None
    rejection_reason: str | None = None
    superadmin_notes: str | None = None
    proposed_delivery_date: datetime | None = None


class QuotationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    service_id: UUID
    status: str
    request_details: str
    custom_requirements: str | None
    enterprise_details: dict[str, Any]
    requested_price: Decimal | None
    final_price: Decimal | None
    rejection_reason: str | None
    superadmin_notes: str | None
    proposed_delivery_date: datetime | None
    approved_date: datetime | None
    completed_date: datetime | None
    row_version: int
    created_at: datetime
    updated_at: datetime


class QuotationStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    completed: int
