from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class TenantCreate(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    contact_name: str = Field(min_length=1)
    company_name: str | None = None
    email: EmailStr | None = None
    organization_id: str | None = None


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    contact_name: str
    company_name: str | None
    email: str | None
    organization_id: str | None
    is_active: bool
    crm_access: bool
    hrm_access: bool
    job_portal_access: bool
    job_board_access: bool
    project_management_access: bool
    created_at: datetime
    updated_at: datetime
