from __future__ import annotations

import logging
from typing import Protocol

from backoffice.notifications.models import Notification

logger = logging.getLogger("backoffice.notifications")


class PushTransport(Protocol):
    def send(self, notification: Notification) -> None: ...


class LoggingPushTransport:
    """Default transport: writes the push to the log stream."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "notification.pushed",
            extra={
                "notification_id": str(notification.id),
                "tenant_id": notification.tenant_id,
                "status": notification.type,
            },
        )


_transport: PushTransport = LoggingPushTransport()


def get_push_transport() -> PushTransport:
    return _transport


def set_push_transport(transport: PushTransport) -> None:
    global _transport
    _transport = transport
