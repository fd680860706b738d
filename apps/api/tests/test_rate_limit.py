from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.core.auth import AuthUser, get_current_user
from backoffice.core.config import get_settings
from backoffice.core.database import Base, get_db
from backoffice.main import app
from backoffice.middleware import rate_limit
from backoffice.middleware.rate_limit import reset_rate_limiter, tracked_buckets


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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_ACCESS_LOOKUPS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="anonymous", roles=["guest"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_access_link_lookups_are_rate_limited(client: TestClient) -> None:
    responses = [client.get(f"/products/access/guess-{index}") for index in range(5)]

    assert [response.status_code for response in responses[:3]] == [404, 404, 404]
    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_forwarded_header_ignored_from_untrusted_peer(client: TestClient) -> None:
    statuses = [
        client.get("/products/access/guess", headers={"X-Forwarded-For": f"203.0.113.{index}"}).status_code
        for index in range(10)
    ]

    assert statuses[:3] == [404, 404, 404]
    assert set(statuses[3:]) == {429}
    assert tracked_buckets() == 1


def test_buckets_are_per_client_behind_trusted_proxy(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_TRUSTED_PROXIES", "testclient, 10.0.0.254")
    get_settings.cache_clear()

    for _ in range(3):
        client.get("/products/access/guess", headers={"X-Forwarded-For": "10.0.0.1"})

    assert client.get("/products/access/guess", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
    # The client-supplied leftmost hop is not trusted; the proxy-appended one is.
    spoofed = client.get("/products/access/guess", headers={"X-Forwarded-For": "1.2.3.4, 10.0.0.1, 10.0.0.254"})
    assert spoofed.status_code == 429
    assert client.get("/products/access/guess", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 404


def test_idle_buckets_are_evicted(monkeypatch: pytest.MonkeyPatch) -> None:
    clock = [1000.0]
    monkeypatch.setattr(rate_limit.time, "monotonic", lambda: clock[0])
    monkeypatch.setattr(rate_limit, "PRUNE_THRESHOLD", 2)

    limiter = rate_limit._TokenBucketLimiter()
    limiter.take("10.0.0.1", "access-link", capacity=3, window_seconds=60)
    limiter.take("10.0.0.2", "access-link", capacity=3, window_seconds=60)
    clock[0] += 61
    limiter.take("10.0.0.3", "access-link", capacity=3, window_seconds=60)

    assert len(limiter) == 1


def test_other_endpoints_are_not_rate_limited(client: TestClient) -> None:
    responses = [client.get("/products") for _ in range(10)]
    assert all(response.status_code == 200 for response in responses)
