from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


NotificationType = Literal["info", "success", "warning", "error"]


class NotificationEvent(BaseModel):
    """Payload handed to the dispatcher; independent of the transport."""

    tenant_id: str
    title: str
    message: str
    type: NotificationType = "info"
    link: str | None = None
    related_model: str | None = None
    related_id: str | None = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    title: str
    message: str
    type: str
    link: str | None
    related_model: str | None
    related_id: str | None
    is_read: bool
    delivery_status: str
    created_at: datetime
