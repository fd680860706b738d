from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, event, func, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice import audit, events
from backoffice.core.config import get_settings
from backoffice.core.database import Base
from backoffice.entitlements.models import Entitlement, EntitlementUsagePeriod, Product
from backoffice.entitlements.repository import EntitlementRepository
from backoffice.entitlements.schemas import ProductCreate
from backoffice.entitlements.service import (
    EntitlementManager,
    ProductService,
    as_utc,
    build_access_url,
    utcnow,
)
from backoffice.entitlements.usage import UsageTracker
from backoffice.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from backoffice.notifications.models import Notification
from backoffice.platform.security.context import AuthContext
from backoffice.tenants.models import Tenant


OPERATOR = AuthContext(user_id="op-1", roles=["superadmin"])
SECOND_OPERATOR = AuthContext(user_id="op-2", roles=["superadmin"])
TENANT = AuthContext(user_id="t1-user", tenant_id="t1", roles=["admin"])


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
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def seeded(db_session: Session) -> None:
    db_session.add(Tenant(id="t1", contact_name="Jane Doe", company_name="Acme Corp", organization_id="org-1"))
    db_session.add(Product(id="crm", name="CRM", category="crm"))
    db_session.add(Product(id="analytics", name="Analytics"))
    db_session.commit()


def _entitlement_rows(session: Session, tenant_id: str, product_id: str) -> int:
    return int(
        session.scalar(
            select(func.count())
            .select_from(Entitlement)
            .where(Entitlement.tenant_id == tenant_id, Entitlement.product_id == product_id)
        )
    )


def test_grant_creates_entitlement_with_credentials(db_session: Session) -> None:
    manager = EntitlementManager()

    result = manager.grant(db_session, OPERATOR, "t1", "crm")

    assert result.has_access is True
    assert result.granted_by == "op-1"
    assert len(result.access_token) == 32
    assert result.access_link.startswith("acme-corp-")
    assert result.access_url == f"http://localhost:3000/products/access/{result.access_link}"

    product = db_session.get(Product, "crm", populate_existing=True)
    assert product is not None
    assert product.total_enterprises == 1
    assert product.active_enterprises == 1


def test_grant_twice_mutates_in_place(db_session: Session) -> None:
    manager = EntitlementManager()

    first = manager.grant(db_session, OPERATOR, "t1", "crm")
    second = manager.grant(db_session, OPERATOR, "t1", "crm")

    assert _entitlement_rows(db_session, "t1", "crm") == 1
    assert second.id == first.id
    assert second.access_link != first.access_link
    assert second.access_token != first.access_token

    product = db_session.get(Product, "crm", populate_existing=True)
    assert product is not None
    assert product.total_enterprises == 1
    assert product.active_enterprises == 1


def test_revoke_is_idempotent_and_keeps_history(db_session: Session) -> None:
    manager = EntitlementManager()
    granted = manager.grant(db_session, OPERATOR, "t1", "crm")

    first = manager.revoke(db_session, OPERATOR, "t1", "crm")
    second = manager.revoke(db_session, OPERATOR, "t1", "crm")

    for revoked in (first, second):
        assert revoked.has_access is False
        assert revoked.revoked_by == "op-1"
        assert revoked.granted_at is not None
        assert revoked.access_link == granted.access_link
    assert second.revoked_at == first.revoked_at

    product = db_session.get(Product, "crm", populate_existing=True)
    assert product is not None
    assert product.active_enterprises == 0
    assert product.total_enterprises == 1
    assert len([entry for entry in audit.audit_entries if entry["action"] == "revoke"]) == 1


def test_revoke_without_entitlement_is_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        EntitlementManager().revoke(db_session, OPERATOR, "t1", "crm")
    assert exc_info.value.code == "ENTITLEMENT_NOT_FOUND"


def test_regenerate_invalidates_previous_credentials(db_session: Session) -> None:
    manager = EntitlementManager()
    granted = manager.grant(db_session, OPERATOR, "t1", "crm")

    regenerated = manager.regenerate(db_session, OPERATOR, "t1", "crm")

    assert regenerated.access_link != granted.access_link
    assert regenerated.access_token != granted.access_token
    assert manager.verify_credential(db_session, access_link=granted.access_link).granted is False
    assert manager.verify_credential(db_session, access_token=granted.access_token).granted is False
    assert manager.verify_credential(db_session, access_link=regenerated.access_link).granted is True
    assert manager.verify_credential(db_session, access_token=regenerated.access_token).granted is True


def test_regenerate_requires_granted_entitlement(db_session: Session) -> None:
    manager = EntitlementManager()

    with pytest.raises(NotFoundError):
        manager.regenerate(db_session, OPERATOR, "t1", "crm")

    manager.grant(db_session, OPERATOR, "t1", "crm")
    manager.revoke(db_session, OPERATOR, "t1", "crm")
    with pytest.raises(ValidationError) as exc_info:
        manager.regenerate(db_session, OPERATOR, "t1", "crm")
    assert exc_info.value.code == "ENTITLEMENT_REVOKED"


def test_legacy_flag_tracks_entitlement(db_session: Session) -> None:
    manager = EntitlementManager()

    manager.grant(db_session, OPERATOR, "t1", "crm")
    tenant = db_session.get(Tenant, "t1", populate_existing=True)
    assert tenant is not None and tenant.crm_access is True

    manager.revoke(db_session, OPERATOR, "t1", "crm")
    tenant = db_session.get(Tenant, "t1", populate_existing=True)
    assert tenant is not None and tenant.crm_access is False

    manager.grant(db_session, OPERATOR, "t1", "analytics")
    tenant = db_session.get(Tenant, "t1", populate_existing=True)
    assert tenant is not None
    assert tenant.crm_access is False
    assert tenant.hrm_access is False


def test_verify_reads_entitlement_not_legacy_flag(db_session: Session) -> None:
    tenant = db_session.get(Tenant, "t1")
    assert tenant is not None
    tenant.crm_access = True
    db_session.commit()

    decision = EntitlementManager().verify(db_session, "t1", "crm")

    assert decision.granted is False
    assert decision.reason == "ENTITLEMENT_NOT_FOUND"


def test_operator_role_required(db_session: Session) -> None:
    manager = EntitlementManager()
    with pytest.raises(ForbiddenError):
        manager.grant(db_session, TENANT, "t1", "crm")
    with pytest.raises(ForbiddenError):
        manager.revoke(db_session, TENANT, "t1", "crm")
    with pytest.raises(ForbiddenError):
        manager.regenerate(db_session, TENANT, "t1", "crm")


def test_grant_unknown_tenant_or_product(db_session: Session) -> None:
    manager = EntitlementManager()
    with pytest.raises(NotFoundError) as tenant_error:
        manager.grant(db_session, OPERATOR, "missing", "crm")
    assert tenant_error.value.code == "TENANT_NOT_FOUND"

    with pytest.raises(NotFoundError) as product_error:
        manager.grant(db_session, OPERATOR, "t1", "missing")
    assert product_error.value.code == "PRODUCT_NOT_FOUND"


def test_end_to_end_grant_revoke_regrant(db_session: Session) -> None:
    manager = EntitlementManager()

    first = manager.grant(db_session, OPERATOR, "t1", "crm")
    assert manager.verify(db_session, "t1", "crm").granted is True

    manager.revoke(db_session, OPERATOR, "t1", "crm")
    denied = manager.verify(db_session, "t1", "crm")
    assert denied.granted is False
    assert denied.reason == "ENTITLEMENT_REVOKED"

    recent = manager.grant(db_session, SECOND_OPERATOR, "t1", "crm")
    assert _entitlement_rows(db_session, "t1", "crm") == 1
    assert recent.has_access is True
    assert recent.revoked_at is None
    assert recent.granted_by == "op-1"
    assert recent.granted_at == first.granted_at

    stale_at = utcnow() - timedelta(days=40)
    db_session.execute(update(Entitlement).where(Entitlement.id == first.id).values(granted_at=stale_at))
    db_session.commit()
    manager.revoke(db_session, OPERATOR, "t1", "crm")

    regranted = manager.grant(db_session, SECOND_OPERATOR, "t1", "crm")
    assert _entitlement_rows(db_session, "t1", "crm") == 1
    assert regranted.granted_by == "op-2"
    granted_at = as_utc(regranted.granted_at)
    assert granted_at is not None and granted_at > utcnow() - timedelta(minutes=1)


class _FlakyRepository(EntitlementRepository):
    def __init__(self, failures: int) -> None:
        self.failures = failures

    def compare_and_set(self, session, entitlement_id, expected_version, values):  # type: ignore[no-untyped-def]
        if self.failures > 0:
            self.failures -= 1
            return False
        return super().compare_and_set(session, entitlement_id, expected_version, values)


def test_grant_retries_after_version_conflict(db_session: Session) -> None:
    manager = EntitlementManager(repository=_FlakyRepository(failures=1))
    first = manager.grant(db_session, OPERATOR, "t1", "crm")

    second = manager.grant(db_session, OPERATOR, "t1", "crm")

    assert second.id == first.id
    assert second.row_version == first.row_version + 1


def test_grant_gives_up_after_repeated_conflicts(db_session: Session) -> None:
    manager = EntitlementManager(repository=_FlakyRepository(failures=100))
    manager.grant(db_session, OPERATOR, "t1", "crm")

    with pytest.raises(ConflictError) as exc_info:
        manager.grant(db_session, OPERATOR, "t1", "crm")
    assert exc_info.value.code == "ENTITLEMENT_WRITE_CONFLICT"


def test_product_delete_blocked_while_entitled(db_session: Session) -> None:
    manager = EntitlementManager()
    products = ProductService()
    manager.grant(db_session, OPERATOR, "t1", "crm")

    with pytest.raises(ConflictError) as exc_info:
        products.delete_product(db_session, OPERATOR, "crm")
    assert exc_info.value.code == "PRODUCT_IN_USE"
    assert exc_info.value.details["entitled_tenants"] == 1

    products.delete_product(db_session, OPERATOR, "analytics")
    assert db_session.get(Product, "analytics", populate_existing=True) is None


def test_product_delete_keeps_revoked_history() -> None:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", lambda dbapi_conn, _record: dbapi_conn.execute("PRAGMA foreign_keys=ON"))
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        session.add(Tenant(id="t1", contact_name="Jane Doe", organization_id="org-1"))
        session.add(Product(id="crm", name="CRM", category="crm"))
        session.commit()
        manager = EntitlementManager()
        manager.grant(session, OPERATOR, "t1", "crm")
        UsageTracker().record_access(session, TENANT, "t1", "crm")
        manager.revoke(session, OPERATOR, "t1", "crm")

        ProductService().delete_product(session, OPERATOR, "crm")

        assert _entitlement_rows(session, "t1", "crm") == 1
        assert session.scalar(select(func.count()).select_from(EntitlementUsagePeriod)) == 2
        product = session.get(Product, "crm", populate_existing=True)
        assert product is not None
        assert product.is_active is False
        assert product.display_in_menu is False
        assert audit.audit_entries[-1]["action"] == "retire"

        with pytest.raises(ConflictError):
            ProductService().create_product(session, OPERATOR, ProductCreate(id="crm", name="CRM again"))
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_list_for_tenant_distinguishes_states(db_session: Session) -> None:
    manager = EntitlementManager()
    db_session.add(Product(id="legacy", name="Legacy", is_active=False))
    db_session.commit()
    manager.grant(db_session, OPERATOR, "t1", "crm")
    manager.grant(db_session, OPERATOR, "t1", "analytics")
    manager.revoke(db_session, OPERATOR, "t1", "analytics")

    listing = {item.product.id: item for item in manager.list_for_tenant(db_session, OPERATOR, "t1")}

    assert set(listing) == {"crm", "analytics"}
    assert listing["crm"].status == "granted"
    assert listing["crm"].has_access is True
    assert listing["crm"].entitlement is not None
    assert listing["analytics"].status == "revoked"
    assert listing["analytics"].entitlement is None


def test_lookup_access_link_errors_are_distinct(db_session: Session) -> None:
    manager = EntitlementManager()
    granted = manager.grant(db_session, OPERATOR, "t1", "crm")

    summary = manager.lookup_access_link(db_session, granted.access_link)
    assert summary.product_id == "crm"
    assert summary.tenant_name == "Acme Corp"

    with pytest.raises(NotFoundError) as missing:
        manager.lookup_access_link(db_session, "nope")
    assert missing.value.code == "ACCESS_LINK_NOT_FOUND"

    product = db_session.get(Product, "crm")
    assert product is not None
    product.is_active = False
    db_session.commit()
    with pytest.raises(NotFoundError) as inactive:
        manager.lookup_access_link(db_session, granted.access_link)
    assert inactive.value.code == "PRODUCT_INACTIVE"

    manager.revoke(db_session, OPERATOR, "t1", "crm")
    with pytest.raises(ForbiddenError) as revoked:
        manager.lookup_access_link(db_session, granted.access_link)
    assert revoked.value.code == "ENTITLEMENT_REVOKED"


def test_access_url_uses_subdomain_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("ACCESS_HOST", "backoffice.example.com")
    get_settings.cache_clear()

    assert build_access_url("acme-1234") == "https://acme-1234.backoffice.example.com"

    monkeypatch.setenv("ACCESS_URL_MODE", "path")
    monkeypatch.setenv("FRONTEND_URL", "https://app.example.com/")
    get_settings.cache_clear()
    assert build_access_url("acme-1234") == "https://app.example.com/products/access/acme-1234"


def test_grant_audits_without_token_and_notifies_tenant(db_session: Session) -> None:
    granted = EntitlementManager().grant(db_session, OPERATOR, "t1", "crm")

    grant_audits = [entry for entry in audit.audit_entries if entry["action"] == "grant"]
    assert len(grant_audits) == 1
    assert granted.access_token not in str(grant_audits[0])

    granted_events = [item for item in events.published_events if item["event_type"] == "entitlement.granted"]
    assert granted_events[-1]["payload"]["entitlement_id"] == str(granted.id)

    notifications = db_session.scalars(select(Notification).where(Notification.tenant_id == "t1")).all()
    assert [item.title for item in notifications] == ["Product Access Granted"]
    assert notifications[0].type == "success"
    assert notifications[0].related_id == str(granted.id)


def test_notification_failure_does_not_fail_grant(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_notification(**_kwargs):  # type: ignore[no-untyped-def]
        raise RuntimeError("notification store down")

    monkeypatch.setattr("backoffice.notifications.service.Notification", broken_notification)
    manager = EntitlementManager()

    granted = manager.grant(db_session, OPERATOR, "t1", "crm")

    assert granted.has_access is True
    assert manager.verify(db_session, "t1", "crm").granted is True
    assert db_session.scalar(select(func.count()).select_from(Notification)) == 0
