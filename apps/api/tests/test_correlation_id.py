from __future__ import annotations

import asyncio
import json
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from backoffice import audit, events
from backoffice.context import reset_correlation_id, set_correlation_id
from backoffice.core.auth import AuthUser, get_current_user
from backoffice.core.config import get_settings
from backoffice.core.database import Base, get_db
from backoffice.errors import NotFoundError, engine_error_handler
from backoffice.main import app
from backoffice.middleware.rate_limit import reset_rate_limiter
from backoffice.otel import get_fastapi_server_request_hook
from backoffice.tenants.models import Tenant


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="op-1", roles=["superadmin"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get("/products/unknown")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get("/products/unknown", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_audit_and_events_use_request_correlation_id(client: TestClient, db_session: Session) -> None:
    db_session.add(Tenant(id="t1", contact_name="Jane Doe", company_name="Acme Corp"))
    db_session.commit()
    product = client.post("/products", json={"id": "crm", "name": "CRM"})
    assert product.status_code == 201

    response = client.post("/entitlements/t1/crm/grant", headers={"X-Correlation-Id": "grant-corr-42"})
    assert response.status_code == 200

    grant_entries = [entry for entry in audit.audit_entries if entry["action"] == "grant"]
    assert grant_entries
    assert grant_entries[-1]["correlation_id"] == "grant-corr-42"
    assert grant_entries[-1]["after"].get("access_token") in (None, "***")

    granted = [event for event in events.published_events if event["event_type"] == "entitlement.granted"]
    assert granted
    assert granted[-1]["correlation_id"] == "grant-corr-42"


@pytest.mark.parametrize("supplied", ["x" * 200, "bad id value", "id;drop"])
def test_malformed_correlation_id_is_replaced(client: TestClient, supplied: str) -> None:
    response = client.get("/products/unknown", headers={"X-Correlation-Id": supplied})

    echoed = response.headers.get("x-correlation-id")
    assert echoed
    assert echoed != supplied
    assert response.json()["correlation_id"] == echoed


def test_server_request_hook_tags_route_group() -> None:
    class _Span:
        def __init__(self) -> None:
            self.attributes: dict[str, object] = {}

        def set_attribute(self, key: str, value: object) -> None:
            self.attributes[key] = value

    hook = get_fastapi_server_request_hook()
    lookup = _Span()
    hook(lookup, {"path": "/products/access/acme-crm-1a2b", "headers": [(b"x-correlation-id", b"hook-1")]})
    assert lookup.attributes == {"backoffice.route_group": "access-link", "correlation_id": "hook-1"}

    spoofed = _Span()
    hook(spoofed, {"path": "/quotations", "headers": [(b"x-correlation-id", b"two words")]})
    assert spoofed.attributes == {"backoffice.route_group": "quotations"}


def test_engine_error_handler_renders_envelope() -> None:
    request = Request({"type": "http", "method": "GET", "path": "/products/x", "headers": []})
    token = set_correlation_id("handler-corr-1")
    try:
        response = asyncio.run(
            engine_error_handler(request, NotFoundError("Product not found", code="PRODUCT_NOT_FOUND"))
        )
    finally:
        reset_correlation_id(token)

    assert response.status_code == 404
    assert json.loads(response.body) == {
        "code": "PRODUCT_NOT_FOUND",
        "message": "Product not found",
        "details": None,
        "correlation_id": "handler-corr-1",
    }
