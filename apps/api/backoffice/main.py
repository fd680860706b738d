from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from backoffice.api.routes import router as api_router
from backoffice.core.config import get_settings
from backoffice.core.context import RequestContextMiddleware
from backoffice.core.events import InternalEvent, event_bus
from backoffice.errors import EngineError, engine_error_handler
from backoffice.logging import configure_logging
from backoffice.middleware.correlation_id import CorrelationIdMiddleware
from backoffice.middleware.rate_limit import AccessLinkRateLimitMiddleware
from backoffice.middleware.request_logging import RequestLoggingMiddleware
from backoffice.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("backoffice.lifecycle")
_subscriptions_registered = False

_entitlement_event_types = [
    "entitlement.granted",
    "entitlement.revoked",
    "entitlement.regenerated",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_entitlement_event(event: InternalEvent) -> None:
    payload = event.payload.get("payload", {}) if isinstance(event.payload, dict) else {}
    logger.info(
        "entitlement_event",
        extra={
            "event_name": event.name,
            "tenant_id": payload.get("tenant_id"),
            "product_id": payload.get("product_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _entitlement_event_types:
            event_bus.subscribe(event_name, _on_entitlement_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Backoffice Entitlements API", version="0.1.0", lifespan=lifespan)
app.add_middleware(AccessLinkRateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_exception_handler(EngineError, engine_error_handler)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("backoffice-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
