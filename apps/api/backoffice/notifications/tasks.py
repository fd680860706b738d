from __future__ import annotations

import uuid

from backoffice.core.celery_app import celery_app
from backoffice.core.database import SessionLocal
from backoffice.notifications.service import DELIVER_TASK_NAME, notification_service


@celery_app.task(name=DELIVER_TASK_NAME)
def deliver_notification_task(notification_id: str) -> str:
    session = SessionLocal()
    try:
        notification = notification_service.deliver(session, uuid.UUID(notification_id))
        return notification.delivery_status if notification is not None else "missing"
    finally:
        session.close()
