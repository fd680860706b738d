from celery import Celery

from backoffice.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "backoffice_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["backoffice.notifications.tasks"],
)
