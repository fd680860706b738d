from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice import audit, events
from backoffice.core.config import Settings, get_settings
from backoffice.entitlements.credentials import generate_unique_link, new_token
from backoffice.entitlements.models import PRODUCT_CATEGORIES, Entitlement, Product
from backoffice.entitlements.repository import (
    EntitlementRepository,
    ProductRepository,
    entitlement_repository,
    product_repository,
)
from backoffice.entitlements.schemas import (
    AccessDecision,
    EntitledTenantRead,
    EntitlementRead,
    EntitlementWithToken,
    ProductAccessSummary,
    ProductAnalytics,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    TenantProductRead,
    UsageSummary,
)
from backoffice.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from backoffice.metrics import observe_entitlement_change, observe_entitlement_verification, observe_write_conflict
from backoffice.notifications.schemas import NotificationEvent
from backoffice.notifications.service import NotificationService
from backoffice.platform.security.context import AuthContext
from backoffice.tenants.models import LEGACY_ACCESS_FLAGS, Tenant
from backoffice.tenants.service import get_tenant_or_404

logger = logging.getLogger("backoffice.entitlements")
tracer = trace.get_tracer("backoffice.entitlements")

PRODUCTS_LINK = "/admin/products"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def build_access_url(access_link: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    mode = settings.access_url_mode
    if mode == "auto":
        mode = "subdomain" if settings.is_production else "path"
    if mode == "subdomain":
        return f"https://{access_link}.{settings.access_host}"
    return f"{settings.frontend_url.rstrip('/')}/products/access/{access_link}"


def category_for(product_id: str) -> str:
    return product_id if product_id in PRODUCT_CATEGORIES else "other"


def sync_legacy_flag(tenant: Tenant, product_id: str, has_access: bool) -> None:
    flag_name = LEGACY_ACCESS_FLAGS.get(product_id)
    if flag_name is not None:
        setattr(tenant, flag_name, has_access)


def _snapshot(entitlement: Entitlement) -> dict[str, Any]:
    return {
        "has_access": entitlement.has_access,
        "granted_at": entitlement.granted_at.isoformat() if entitlement.granted_at else None,
        "granted_by": entitlement.granted_by,
        "revoked_at": entitlement.revoked_at.isoformat() if entitlement.revoked_at else None,
        "revoked_by": entitlement.revoked_by,
        "access_link": entitlement.access_link,
        "row_version": entitlement.row_version,
    }


def _require_operator(ctx: AuthContext) -> None:
    if not ctx.is_operator:
        raise ForbiddenError("Operator role required")


def _get_product_or_404(session: Session, repository: ProductRepository, product_id: str) -> Product:
    product = repository.get(session, product_id)
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": product_id})
    return product


@dataclass(slots=True)
class EntitlementManager:
    repository: EntitlementRepository = entitlement_repository
    product_repository: ProductRepository = product_repository
    notifications: NotificationService = field(default_factory=NotificationService)

    def grant(self, session: Session, ctx: AuthContext, tenant_id: str, product_id: str) -> EntitlementWithToken:
        _require_operator(ctx)
        settings = get_settings()

        with tracer.start_as_current_span("entitlement.grant") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("product_id", product_id)
            if ctx.correlation_id:
                span.set_attribute("correlation_id", ctx.correlation_id)

            for _ in range(max(1, settings.optimistic_retry_attempts)):
                tenant = get_tenant_or_404(session, tenant_id)
                product = _get_product_or_404(session, self.product_repository, product_id)
                existing = self.repository.get(session, tenant_id, product_id)
                before = _snapshot(existing) if existing is not None else None
                now = utcnow()
                access_link = self._allocate_link(session, tenant.display_name, settings)

                if existing is None:
                    entitlement = Entitlement(
                        tenant_id=tenant_id,
                        product_id=product_id,
                        has_access=True,
                        granted_at=now,
                        granted_by=ctx.user_id,
                        access_token=new_token(),
                        access_link=access_link,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(entitlement)
                    try:
                        session.flush()
                    except IntegrityError:
                        # Lost a first-grant race; retry through the in-place path.
                        session.rollback()
                        observe_write_conflict("entitlement")
                        continue
                    created, was_active = True, False
                    break

                values: dict[str, Any] = {
                    "has_access": True,
                    "revoked_at": None,
                    "revoked_by": None,
                    "access_token": new_token(),
                    "access_link": access_link,
                    "updated_at": now,
                }
                granted_at = as_utc(existing.granted_at)
                if granted_at is None or granted_at < now - timedelta(days=settings.grant_staleness_days):
                    values["granted_at"] = now
                    values["granted_by"] = ctx.user_id
                was_active = existing.has_access
                if self.repository.compare_and_set(session, existing.id, existing.row_version, values):
                    entitlement = existing
                    created = False
                    break
                session.rollback()
                observe_write_conflict("entitlement")
            else:
                raise ConflictError(
                    "Entitlement was modified concurrently",
                    code="ENTITLEMENT_WRITE_CONFLICT",
                    details={"tenant_id": tenant_id, "product_id": product_id},
                )

            sync_legacy_flag(tenant, product_id, True)
            self.product_repository.increment_counters(
                session,
                product_id,
                total_enterprises=1 if created else 0,
                active_enterprises=0 if was_active else 1,
            )
            session.commit()
            session.refresh(entitlement)
            span.set_attribute("created", created)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="entitlement",
            entity_id=str(entitlement.id),
            action="grant",
            before=before,
            after=_snapshot(entitlement),
            correlation_id=ctx.correlation_id,
        )
        self._publish("entitlement.granted", ctx, entitlement)
        observe_entitlement_change("grant", product_id)
        logger.info(
            "entitlement.granted",
            extra={"tenant_id": tenant_id, "product_id": product_id, "created_new": created, "actor": ctx.user_id},
        )
        self._notify(
            session,
            tenant_id,
            title="Product Access Granted",
            message=f"You have been granted access to {product.name}",
            type_="success",
            entitlement=entitlement,
        )
        return self._with_token(session, entitlement)

    def revoke(self, session: Session, ctx: AuthContext, tenant_id: str, product_id: str) -> EntitlementRead:
        _require_operator(ctx)
        settings = get_settings()

        with tracer.start_as_current_span("entitlement.revoke") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("product_id", product_id)
            if ctx.correlation_id:
                span.set_attribute("correlation_id", ctx.correlation_id)

            for _ in range(max(1, settings.optimistic_retry_attempts)):
                tenant = get_tenant_or_404(session, tenant_id)
                product = _get_product_or_404(session, self.product_repository, product_id)
                entitlement = self.repository.get(session, tenant_id, product_id)
                if entitlement is None:
                    raise NotFoundError(
                        "Tenant has no entitlement for this product",
                        code="ENTITLEMENT_NOT_FOUND",
                        details={"tenant_id": tenant_id, "product_id": product_id},
                    )
                before = _snapshot(entitlement)
                was_active = entitlement.has_access
                if not was_active:
                    break

                now = utcnow()
                values = {"has_access": False, "revoked_at": now, "revoked_by": ctx.user_id, "updated_at": now}
                if self.repository.compare_and_set(session, entitlement.id, entitlement.row_version, values):
                    break
                session.rollback()
                observe_write_conflict("entitlement")
            else:
                raise ConflictError(
                    "Entitlement was modified concurrently",
                    code="ENTITLEMENT_WRITE_CONFLICT",
                    details={"tenant_id": tenant_id, "product_id": product_id},
                )

            sync_legacy_flag(tenant, product_id, False)
            if was_active:
                self.product_repository.increment_counters(session, product_id, active_enterprises=-1)
            session.commit()
            session.refresh(entitlement)
            span.set_attribute("changed", was_active)

        if was_active:
            audit.record(
                actor_user_id=ctx.user_id,
                entity_type="entitlement",
                entity_id=str(entitlement.id),
                action="revoke",
                before=before,
                after=_snapshot(entitlement),
                correlation_id=ctx.correlation_id,
            )
            self._publish("entitlement.revoked", ctx, entitlement)
            observe_entitlement_change("revoke", product_id)
            self._notify(
                session,
                tenant_id,
                title="Product Access Revoked",
                message=f"Your access to {product.name} has been revoked",
                type_="warning",
                entitlement=entitlement,
            )
        logger.info(
            "entitlement.revoked",
            extra={"tenant_id": tenant_id, "product_id": product_id, "status": "revoked" if was_active else "unchanged"},
        )
        return self._to_read(session, entitlement)

    def regenerate(self, session: Session, ctx: AuthContext, tenant_id: str, product_id: str) -> EntitlementWithToken:
        _require_operator(ctx)
        settings = get_settings()

        with tracer.start_as_current_span("entitlement.regenerate") as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("product_id", product_id)
            if ctx.correlation_id:
                span.set_attribute("correlation_id", ctx.correlation_id)

            for _ in range(max(1, settings.optimistic_retry_attempts)):
                tenant = get_tenant_or_404(session, tenant_id)
                product = _get_product_or_404(session, self.product_repository, product_id)
                entitlement = self.repository.get(session, tenant_id, product_id)
                if entitlement is None:
                    raise NotFoundError(
                        "Tenant has no entitlement for this product",
                        code="ENTITLEMENT_NOT_FOUND",
                        details={"tenant_id": tenant_id, "product_id": product_id},
                    )
                if not entitlement.has_access:
                    raise ValidationError(
                        "Entitlement is revoked; grant access first",
                        code="ENTITLEMENT_REVOKED",
                        details={"tenant_id": tenant_id, "product_id": product_id},
                    )
                before = _snapshot(entitlement)
                values = {
                    "access_token": new_token(),
                    "access_link": self._allocate_link(session, tenant.display_name, settings),
                    "updated_at": utcnow(),
                }
                if self.repository.compare_and_set(session, entitlement.id, entitlement.row_version, values):
                    break
                session.rollback()
                observe_write_conflict("entitlement")
            else:
                raise ConflictError(
                    "Entitlement was modified concurrently",
                    code="ENTITLEMENT_WRITE_CONFLICT",
                    details={"tenant_id": tenant_id, "product_id": product_id},
                )

            session.commit()
            session.refresh(entitlement)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="entitlement",
            entity_id=str(entitlement.id),
            action="regenerate",
            before=before,
            after=_snapshot(entitlement),
            correlation_id=ctx.correlation_id,
        )
        self._publish("entitlement.regenerated", ctx, entitlement)
        observe_entitlement_change("regenerate", product_id)
        logger.info("entitlement.regenerated", extra={"tenant_id": tenant_id, "product_id": product_id})
        self._notify(
            session,
            tenant_id,
            title="Product Access Link Updated",
            message=f"A new access link was issued for {product.name}; previous links no longer work",
            type_="info",
            entitlement=entitlement,
        )
        return self._with_token(session, entitlement)

    def verify(self, session: Session, tenant_id: str, product_id: str) -> AccessDecision:
        """The authorization check for serving product content.

        Reads the entitlement row only. The legacy tenant booleans are never
        consulted here.
        """
        entitlement = self.repository.get(session, tenant_id, product_id)
        if entitlement is None:
            decision = AccessDecision(
                granted=False, reason="ENTITLEMENT_NOT_FOUND", tenant_id=tenant_id, product_id=product_id
            )
        elif not entitlement.has_access:
            decision = AccessDecision(granted=False, reason="ENTITLEMENT_REVOKED", tenant_id=tenant_id, product_id=product_id)
        else:
            decision = AccessDecision(granted=True, reason="GRANTED", tenant_id=tenant_id, product_id=product_id)
        observe_entitlement_verification("granted" if decision.granted else "denied")
        return decision

    def verify_credential(
        self,
        session: Session,
        *,
        access_link: str | None = None,
        access_token: str | None = None,
    ) -> AccessDecision:
        if access_link:
            entitlement = self.repository.get_by_link(session, access_link)
        elif access_token:
            entitlement = self.repository.get_by_token(session, access_token)
        else:
            entitlement = None

        if entitlement is None:
            decision = AccessDecision(granted=False, reason="ENTITLEMENT_NOT_FOUND")
        else:
            decision = AccessDecision(
                granted=entitlement.has_access,
                reason="GRANTED" if entitlement.has_access else "ENTITLEMENT_REVOKED",
                tenant_id=entitlement.tenant_id,
                product_id=entitlement.product_id,
            )
        observe_entitlement_verification("granted" if decision.granted else "denied")
        return decision

    def lookup_access_link(self, session: Session, access_link: str) -> ProductAccessSummary:
        entitlement = self.repository.get_by_link(session, access_link)
        if entitlement is None:
            raise NotFoundError("Invalid or expired access link", code="ACCESS_LINK_NOT_FOUND")
        if not entitlement.has_access:
            raise ForbiddenError("Access to this product has been revoked", code="ENTITLEMENT_REVOKED")
        product = _get_product_or_404(session, self.product_repository, entitlement.product_id)
        if not product.is_active:
            raise NotFoundError(
                "Product is not active", code="PRODUCT_INACTIVE", details={"product_id": product.id}
            )
        tenant = get_tenant_or_404(session, entitlement.tenant_id)
        return ProductAccessSummary(
            product_id=product.id,
            name=product.name,
            description=product.description,
            icon=product.icon,
            category=product.category,
            tenant_id=tenant.id,
            tenant_name=tenant.display_name,
        )

    def list_for_tenant(self, session: Session, ctx: AuthContext, tenant_id: str) -> list[TenantProductRead]:
        if not ctx.is_operator and ctx.tenant_id != tenant_id:
            raise ForbiddenError("Tenants can only list their own products")
        get_tenant_or_404(session, tenant_id)

        by_product = {row.product_id: row for row in self.repository.list_for_tenant(session, tenant_id)}
        result: list[TenantProductRead] = []
        for product in self.product_repository.list(session, active=True):
            entitlement = by_product.get(product.id)
            if entitlement is None:
                status = "none"
            elif entitlement.has_access:
                status = "granted"
            else:
                status = "revoked"
            result.append(
                TenantProductRead(
                    product=ProductRead.model_validate(product),
                    has_access=status == "granted",
                    status=status,
                    entitlement=self._to_read(session, entitlement) if status == "granted" else None,
                )
            )
        return result

    def usage_summary(self, session: Session, entitlement_id: uuid.UUID) -> UsageSummary:
        entitlement = self.repository.get_by_id(session, entitlement_id)
        return UsageSummary(
            distinct_days=self.repository.list_usage_periods(session, entitlement_id, "day"),
            distinct_months=self.repository.list_usage_periods(session, entitlement_id, "month"),
            total_actions=entitlement.total_actions if entitlement is not None else 0,
        )

    def _allocate_link(self, session: Session, seed_text: str | None, settings: Settings) -> str:
        return generate_unique_link(
            seed_text,
            lambda candidate: self.repository.link_taken(session, candidate),
            settings.access_link_max_attempts,
        )

    def _to_read(self, session: Session, entitlement: Entitlement) -> EntitlementRead:
        read = EntitlementRead.model_validate(entitlement)
        return read.model_copy(
            update={
                "access_url": build_access_url(entitlement.access_link),
                "usage_summary": self.usage_summary(session, entitlement.id),
            }
        )

    def _with_token(self, session: Session, entitlement: Entitlement) -> EntitlementWithToken:
        read = self._to_read(session, entitlement)
        return EntitlementWithToken(**read.model_dump(), access_token=entitlement.access_token)

    def _publish(self, event_type: str, ctx: AuthContext, entitlement: Entitlement) -> None:
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": event_type,
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
                "payload": {
                    "entitlement_id": str(entitlement.id),
                    "tenant_id": entitlement.tenant_id,
                    "product_id": entitlement.product_id,
                    "has_access": entitlement.has_access,
                    "row_version": entitlement.row_version,
                },
            }
        )

    def _notify(
        self,
        session: Session,
        tenant_id: str,
        *,
        title: str,
        message: str,
        type_: str,
        entitlement: Entitlement,
    ) -> None:
        self.notifications.dispatch(
            session,
            NotificationEvent(
                tenant_id=tenant_id,
                title=title,
                message=message,
                type=type_,
                link=PRODUCTS_LINK,
                related_model="Entitlement",
                related_id=str(entitlement.id),
            ),
        )


@dataclass(slots=True)
class ProductService:
    repository: ProductRepository = product_repository
    entitlement_repository: EntitlementRepository = entitlement_repository

    def create_product(self, session: Session, ctx: AuthContext, dto: ProductCreate) -> ProductRead:
        _require_operator(ctx)
        if self.repository.get(session, dto.id) is not None:
            raise ConflictError("A product with this id already exists", code="PRODUCT_EXISTS", details={"product_id": dto.id})

        payload = dto.model_dump(mode="python")
        payload["category"] = dto.category or category_for(dto.id)
        product = Product(**payload, created_by=ctx.user_id)
        session.add(product)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("A product with this id already exists", code="PRODUCT_EXISTS", details={"product_id": dto.id})
        session.refresh(product)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="product",
            entity_id=product.id,
            action="create",
            before=None,
            after={"name": product.name, "category": product.category, "is_active": product.is_active},
            correlation_id=ctx.correlation_id,
        )
        return ProductRead.model_validate(product)

    def list_products(
        self,
        session: Session,
        *,
        active: bool | None = None,
        category: str | None = None,
        menu_only: bool = False,
    ) -> list[ProductRead]:
        rows = self.repository.list(session, active=active, category=category, menu_only=menu_only)
        return [ProductRead.model_validate(row) for row in rows]

    def get_product(self, session: Session, product_id: str) -> ProductRead:
        return ProductRead.model_validate(_get_product_or_404(session, self.repository, product_id))

    def update_product(self, session: Session, ctx: AuthContext, product_id: str, dto: ProductUpdate) -> ProductRead:
        _require_operator(ctx)
        product = _get_product_or_404(session, self.repository, product_id)
        changes = dto.model_dump(mode="python", exclude_unset=True)
        before = {key: getattr(product, key) for key in changes}
        for key, value in changes.items():
            setattr(product, key, value)
        session.commit()
        session.refresh(product)

        if changes:
            audit.record(
                actor_user_id=ctx.user_id,
                entity_type="product",
                entity_id=product.id,
                action="update",
                before={key: str(value) for key, value in before.items()},
                after={key: str(value) for key, value in changes.items()},
                correlation_id=ctx.correlation_id,
            )
        return ProductRead.model_validate(product)

    def delete_product(self, session: Session, ctx: AuthContext, product_id: str) -> None:
        _require_operator(ctx)
        product = _get_product_or_404(session, self.repository, product_id)
        entitled = self.entitlement_repository.count_granted_for_product(session, product_id)
        if entitled > 0:
            raise ConflictError(
                f"Cannot delete product that is being used by {entitled} tenant(s)",
                code="PRODUCT_IN_USE",
                details={"product_id": product_id, "entitled_tenants": entitled},
            )
        before = {"name": product.name, "is_active": product.is_active}

        # Revoked entitlements keep their history, so the product row stays.
        if self.entitlement_repository.count_for_product(session, product_id) > 0:
            product.is_active = False
            product.display_in_menu = False
            session.commit()
            audit.record(
                actor_user_id=ctx.user_id,
                entity_type="product",
                entity_id=product_id,
                action="retire",
                before=before,
                after={"name": product.name, "is_active": False},
                correlation_id=ctx.correlation_id,
            )
            logger.info("product.retired", extra={"product_id": product_id, "actor": ctx.user_id})
            return

        session.delete(product)
        session.commit()

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="product",
            entity_id=product_id,
            action="delete",
            before=before,
            after=None,
            correlation_id=ctx.correlation_id,
        )
        logger.info("product.deleted", extra={"product_id": product_id, "actor": ctx.user_id})

    def analytics(self, session: Session, ctx: AuthContext, product_id: str) -> ProductAnalytics:
        _require_operator(ctx)
        product = _get_product_or_404(session, self.repository, product_id)
        granted = self.entitlement_repository.list_granted_for_product(session, product_id)

        tenants: list[EntitledTenantRead] = []
        for entitlement in granted:
            tenant = session.get(Tenant, entitlement.tenant_id)
            tenants.append(
                EntitledTenantRead(
                    tenant_id=entitlement.tenant_id,
                    tenant_name=tenant.display_name if tenant is not None else entitlement.tenant_id,
                    granted_at=entitlement.granted_at,
                    last_accessed=entitlement.last_accessed,
                    access_count=entitlement.access_count,
                )
            )

        return ProductAnalytics(
            product_id=product.id,
            name=product.name,
            total_enterprises=product.total_enterprises,
            active_enterprises=product.active_enterprises,
            access_count=product.access_count,
            entitled_tenant_count=len(granted),
            active_organizations=self.repository.list_active_tenants(session, product_id),
            tenants=tenants,
        )


entitlement_manager = EntitlementManager()
product_service = ProductService()
