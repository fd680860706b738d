from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backoffice.core.database import get_db
from backoffice.notifications.schemas import NotificationRead
from backoffice.notifications.service import notification_service
from backoffice.platform.security.context import AuthContext
from backoffice.platform.security.dependencies import get_auth_context


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    unread_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[NotificationRead]:
    return notification_service.list_for_tenant(db, ctx, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> NotificationRead:
    return notification_service.mark_read(db, ctx, notification_id)
