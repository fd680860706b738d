from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.entitlements.models import Entitlement, EntitlementUsagePeriod, Product, ProductActiveTenant


class EntitlementRepository:
    def get(self, session: Session, tenant_id: str, product_id: str) -> Entitlement | None:
        return session.scalar(
            select(Entitlement)
            .where(and_(Entitlement.tenant_id == tenant_id, Entitlement.product_id == product_id))
            .execution_options(populate_existing=True)
        )

    def get_by_id(self, session: Session, entitlement_id: uuid.UUID) -> Entitlement | None:
        return session.get(Entitlement, entitlement_id, populate_existing=True)

    def get_by_link(self, session: Session, access_link: str) -> Entitlement | None:
        return session.scalar(
            select(Entitlement).where(Entitlement.access_link == access_link).execution_options(populate_existing=True)
        )

    def get_by_token(self, session: Session, access_token: str) -> Entitlement | None:
        return session.scalar(
            select(Entitlement).where(Entitlement.access_token == access_token).execution_options(populate_existing=True)
        )

    def link_taken(self, session: Session, access_link: str) -> bool:
        return session.scalar(select(Entitlement.id).where(Entitlement.access_link == access_link)) is not None

    def list_for_tenant(self, session: Session, tenant_id: str) -> list[Entitlement]:
        return list(session.scalars(select(Entitlement).where(Entitlement.tenant_id == tenant_id)).all())

    def count_granted_for_product(self, session: Session, product_id: str) -> int:
        return int(
            session.scalar(
                select(func.count())
                .select_from(Entitlement)
                .where(and_(Entitlement.product_id == product_id, Entitlement.has_access.is_(True)))
            )
            or 0
        )

    def count_for_product(self, session: Session, product_id: str) -> int:
        return int(
            session.scalar(select(func.count()).select_from(Entitlement).where(Entitlement.product_id == product_id))
            or 0
        )

    def list_granted_for_product(self, session: Session, product_id: str) -> list[Entitlement]:
        return list(
            session.scalars(
                select(Entitlement)
                .where(and_(Entitlement.product_id == product_id, Entitlement.has_access.is_(True)))
                .order_by(Entitlement.granted_at.desc())
            ).all()
        )

    def compare_and_set(
        self,
        session: Session,
        entitlement_id: uuid.UUID,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        """Applies ``values`` only if the row is still at ``expected_version``."""
        result = session.execute(
            update(Entitlement)
            .where(and_(Entitlement.id == entitlement_id, Entitlement.row_version == expected_version))
            .values(**values, row_version=Entitlement.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_usage_period(self, session: Session, entitlement_id: uuid.UUID, period_type: str, period_key: str) -> bool:
        exists = session.scalar(
            select(EntitlementUsagePeriod.id).where(
                and_(
                    EntitlementUsagePeriod.entitlement_id == entitlement_id,
                    EntitlementUsagePeriod.period_type == period_type,
                    EntitlementUsagePeriod.period_key == period_key,
                )
            )
        )
        if exists is not None:
            return False
        try:
            with session.begin_nested():
                session.add(
                    EntitlementUsagePeriod(entitlement_id=entitlement_id, period_type=period_type, period_key=period_key)
                )
        except IntegrityError:
            return False
        return True

    def list_usage_periods(self, session: Session, entitlement_id: uuid.UUID, period_type: str) -> list[str]:
        return list(
            session.scalars(
                select(EntitlementUsagePeriod.period_key)
                .where(
                    and_(
                        EntitlementUsagePeriod.entitlement_id == entitlement_id,
                        EntitlementUsagePeriod.period_type == period_type,
                    )
                )
                .order_by(EntitlementUsagePeriod.period_key.asc())
            ).all()
        )

    def count_usage_periods(self, session: Session, entitlement_id: uuid.UUID, period_type: str) -> int:
        return int(
            session.scalar(
                select(func.count())
                .select_from(EntitlementUsagePeriod)
                .where(
                    and_(
                        EntitlementUsagePeriod.entitlement_id == entitlement_id,
                        EntitlementUsagePeriod.period_type == period_type,
                    )
                )
            )
            or 0
        )


class ProductRepository:
    def get(self, session: Session, product_id: str) -> Product | None:
        return session.get(Product, product_id, populate_existing=True)

    def list(
        self,
        session: Session,
        *,
        active: bool | None = None,
        category: str | None = None,
        menu_only: bool = False,
    ) -> list[Product]:
        stmt = select(Product)
        if active is not None:
            stmt = stmt.where(Product.is_active.is_(active))
        if category is not None:
            stmt = stmt.where(Product.category == category)
        if menu_only:
            stmt = stmt.where(Product.display_in_menu.is_(True))
        return list(session.scalars(stmt.order_by(Product.menu_order.asc(), Product.name.asc())).all())

    def increment_counters(self, session: Session, product_id: str, **deltas: int) -> None:
        """Atomic ``col = col + n`` updates; negative results are clamped to zero."""
        values: dict[str, Any] = {}
        for column_name, delta in deltas.items():
            if delta == 0:
                continue
            column = getattr(Product, column_name)
            if delta > 0:
                values[column_name] = column + delta
            else:
                values[column_name] = func.max(column + delta, 0) if _is_sqlite(session) else func.greatest(column + delta, 0)
        if not values:
            return
        session.execute(
            update(Product).where(Product.id == product_id).values(**values).execution_options(synchronize_session=False)
        )

    def add_active_tenant(self, session: Session, product_id: str, organization_id: str) -> bool:
        exists = session.scalar(
            select(ProductActiveTenant.id).where(
                and_(ProductActiveTenant.product_id == product_id, ProductActiveTenant.organization_id == organization_id)
            )
        )
        if exists is not None:
            return False
        try:
            with session.begin_nested():
                session.add(ProductActiveTenant(product_id=product_id, organization_id=organization_id))
        except IntegrityError:
            return False
        return True

    def list_active_tenants(self, session: Session, product_id: str) -> list[str]:
        return list(
            session.scalars(
                select(ProductActiveTenant.organization_id)
                .where(ProductActiveTenant.product_id == product_id)
                .order_by(ProductActiveTenant.first_seen_at.asc())
            ).all()
        )


def _is_sqlite(session: Session) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "sqlite"


def period_keys(moment: datetime) -> tuple[str, str]:
    """Calendar day and month keys, ``YYYY-MM-DD`` and ``YYYY-MM``."""
    return moment.strftime("%Y-%m-%d"), moment.strftime("%Y-%m")


entitlement_repository = EntitlementRepository()
product_repository = ProductRepository()
