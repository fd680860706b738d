from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    organization_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    # Legacy per-product booleans read by older clients. Kept equal to the
    # matching entitlement's has_access; never consulted for decisions.
    crm_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    hrm_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    job_portal_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    job_board_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    project_management_access: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        return self.company_name or self.contact_name


LEGACY_ACCESS_FLAGS: dict[str, str] = {
    "crm": "crm_access",
    "hrm": "hrm_access",
    "job-portal": "job_portal_access",
    "job-board": "job_board_access",
    "project-management": "project_management_access",
}
