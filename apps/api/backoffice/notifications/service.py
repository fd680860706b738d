from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from backoffice import events
from backoffice.core.celery_app import celery_app
from backoffice.core.config import get_settings
from backoffice.errors import ForbiddenError, NotFoundError
from backoffice.metrics import observe_notification_failure
from backoffice.notifications.models import Notification
from backoffice.notifications.schemas import NotificationEvent, NotificationRead
from backoffice.notifications.transport import PushTransport, get_push_transport
from backoffice.platform.security.context import AuthContext

logger = logging.getLogger("backoffice.notifications")

DELIVER_TASK_NAME = "backoffice.notifications.deliver"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class NotificationService:
    def dispatch(self, session: Session, event: NotificationEvent) -> Notification | None:
        """Persists and queues a notification. Never raises.

        Callers invoke this after their own commit, so a failure here only
        rolls back the notification row.
        """
        try:
            notification = Notification(**event.model_dump(mode="python"))
            session.add(notification)
            session.commit()
            session.refresh(notification)
        except Exception as exc:
            session.rollback()
            observe_notification_failure("persist")
            logger.exception(
                "notification.persist_failed",
                extra={"tenant_id": event.tenant_id, "error": str(exc)},
            )
            return None

        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "notification.created",
                "occurred_at": utcnow().isoformat(),
                "payload": {
                    "notification_id": str(notification.id),
                    "tenant_id": notification.tenant_id,
                    "type": notification.type,
                },
            }
        )

        if get_settings().notifications_auto_deliver:
            self._enqueue_delivery(notification)
        return notification

    def _enqueue_delivery(self, notification: Notification) -> None:
        try:
            celery_app.send_task(DELIVER_TASK_NAME, args=[str(notification.id)])
        except Exception as exc:
            observe_notification_failure("enqueue")
            logger.exception(
                "notification.enqueue_failed",
                extra={"notification_id": str(notification.id), "error": str(exc)},
            )

    def deliver(
        self,
        session: Session,
        notification_id: uuid.UUID,
        transport: PushTransport | None = None,
    ) -> Notification | None:
        notification = session.get(Notification, notification_id)
        if notification is None:
            logger.warning("notification.missing", extra={"notification_id": str(notification_id)})
            return None
        if notification.delivery_status == "delivered":
            return notification

        active_transport = transport or get_push_transport()
        try:
            active_transport.send(notification)
        except Exception as exc:
            observe_notification_failure("deliver")
            logger.exception(
                "notification.delivery_failed",
                extra={"notification_id": str(notification.id), "error": str(exc)},
            )
            notification.delivery_status = "failed"
            notification.delivery_error = str(exc)[:500]
        else:
            notification.delivery_status = "delivered"
            notification.delivery_error = None
        session.commit()
        return notification

    def list_for_tenant(self, session: Session, ctx: AuthContext, *, unread_only: bool = False) -> list[NotificationRead]:
        if not ctx.is_authenticated or not ctx.tenant_id:
            raise ForbiddenError("A tenant session is required")
        stmt = select(Notification).where(Notification.tenant_id == ctx.tenant_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        rows = session.scalars(stmt.order_by(Notification.created_at.desc())).all()
        return [NotificationRead.model_validate(row) for row in rows]

    def mark_read(self, session: Session, ctx: AuthContext, notification_id: uuid.UUID) -> NotificationRead:
        notification = session.scalar(
            select(Notification).where(
                and_(Notification.id == notification_id, Notification.tenant_id == ctx.tenant_id)
            )
        )
        if notification is None:
            raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
        if not notification.is_read:
            notification.is_read = True
            session.commit()
            session.refresh(notification)
        return NotificationRead.model_validate(notification)


notification_service = NotificationService()
