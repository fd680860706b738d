from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice import audit
from backoffice.core.database import Base
from backoffice.entitlements.schemas import ProductCreate, ProductUpdate
from backoffice.entitlements.seed import DEFAULT_PRODUCTS, ProductSeedHelper
from backoffice.entitlements.service import ProductService
from backoffice.errors import ConflictError, ForbiddenError, NotFoundError
from backoffice.platform.security.context import AuthContext
from backoffice.tenants.schemas import TenantCreate
from backoffice.tenants.service import TenantService


OPERATOR = AuthContext(user_id="op-1", roles=["superadmin"])
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
def clear_audit() -> None:
    audit.audit_entries.clear()


def test_seed_creates_missing_defaults_once(db_session: Session) -> None:
    service = ProductService()
    service.create_product(db_session, OPERATOR, ProductCreate(id="crm", name="Custom CRM name"))
    helper = ProductSeedHelper(service)

    created = helper.ensure_default_products(db_session, OPERATOR)

    assert [product.id for product in created] == [p.id for p in DEFAULT_PRODUCTS if p.id != "crm"]
    assert service.get_product(db_session, "crm").name == "Custom CRM name"
    assert helper.ensure_default_products(db_session, OPERATOR) == []


def test_category_derived_from_id(db_session: Session) -> None:
    service = ProductService()
    assert service.create_product(db_session, OPERATOR, ProductCreate(id="hrm", name="HRM")).category == "hrm"
    assert service.create_product(db_session, OPERATOR, ProductCreate(id="analytics", name="BI")).category == "other"


def test_duplicate_product_conflicts(db_session: Session) -> None:
    service = ProductService()
    service.create_product(db_session, OPERATOR, ProductCreate(id="crm", name="CRM"))

    with pytest.raises(ConflictError) as exc_info:
        service.create_product(db_session, OPERATOR, ProductCreate(id="crm", name="Again"))
    assert exc_info.value.code == "PRODUCT_EXISTS"


def test_list_filters(db_session: Session) -> None:
    service = ProductService()
    service.create_product(db_session, OPERATOR, ProductCreate(id="crm", name="CRM", menu_order=2))
    service.create_product(db_session, OPERATOR, ProductCreate(id="hrm", name="HRM", menu_order=1))
    service.create_product(
        db_session, OPERATOR, ProductCreate(id="legacy", name="Legacy", is_active=False, display_in_menu=False)
    )

    assert [p.id for p in service.list_products(db_session)] == ["hrm", "crm", "legacy"]
    assert [p.id for p in service.list_products(db_session, active=True)] == ["hrm", "crm"]
    assert [p.id for p in service.list_products(db_session, category="crm")] == ["crm"]
    assert [p.id for p in service.list_products(db_session, menu_only=True)] == ["hrm", "crm"]


def test_update_product_records_changed_fields(db_session: Session) -> None:
    service = ProductService()
    service.create_product(db_session, OPERATOR, ProductCreate(id="crm", name="CRM"))

    updated = service.update_product(db_session, OPERATOR, "crm", ProductUpdate(price=Decimal("19.99"), is_active=False))

    assert updated.price == Decimal("19.99")
    assert updated.is_active is False
    assert updated.name == "CRM"
    assert audit.audit_entries[-1]["action"] == "update"
    assert set(audit.audit_entries[-1]["after"]) == {"price", "is_active"}


def test_catalog_mutations_require_operator(db_session: Session) -> None:
    service = ProductService()
    with pytest.raises(ForbiddenError):
        service.create_product(db_session, TENANT, ProductCreate(id="crm", name="CRM"))
    with pytest.raises(NotFoundError):
        service.get_product(db_session, "crm")


def test_tenant_registration(db_session: Session) -> None:
    tenants = TenantService()
    created = tenants.create_tenant(
        db_session, OPERATOR, TenantCreate(id="t1", contact_name="Jane Doe", email="jane@acme.test")
    )
    assert created.crm_access is False

    with pytest.raises(ConflictError) as exc_info:
        tenants.create_tenant(db_session, OPERATOR, TenantCreate(id="t1", contact_name="Again"))
    assert exc_info.value.code == "TENANT_EXISTS"

    with pytest.raises(ForbiddenError):
        tenants.create_tenant(db_session, TENANT, TenantCreate(id="t2", contact_name="Nope"))
    assert [t.id for t in tenants.list_tenants(db_session, OPERATOR)] == ["t1"]
