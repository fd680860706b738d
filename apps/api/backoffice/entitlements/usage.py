from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from opentelemetry import trace
from sqlalchemy.orm import Session

from backoffice.core.config import get_settings
from backoffice.entitlements.repository import (
    EntitlementRepository,
    ProductRepository,
    entitlement_repository,
    period_keys,
    product_repository,
)
from backoffice.metrics import observe_usage_failure, observe_usage_recorded, observe_write_conflict
from backoffice.platform.security.context import AuthContext
from backoffice.tenants.models import Tenant

logger = logging.getLogger("backoffice.usage")
tracer = trace.get_tracer("backoffice.usage")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class UsageTracker:
    """Records tenant-side product accesses.

    Tracking is best effort: every failure is logged and swallowed so the
    request that triggered it is never affected. Returns ``True`` only when
    the access was recorded.
    """

    repository: EntitlementRepository = entitlement_repository
    product_repository: ProductRepository = product_repository

    def record_access(self, session: Session, ctx: AuthContext, tenant_id: str, product_id: str) -> bool:
        if not ctx.is_authenticated:
            return False

        try:
            with tracer.start_as_current_span("usage.record_access") as span:
                span.set_attribute("tenant_id", tenant_id)
                span.set_attribute("product_id", product_id)
                recorded = self._record(session, tenant_id, product_id)
                span.set_attribute("status", "recorded" if recorded else "skipped")
                return recorded
        except Exception as exc:
            session.rollback()
            observe_usage_failure()
            logger.exception(
                "usage.record_failed",
                extra={"tenant_id": tenant_id, "product_id": product_id, "error": str(exc)},
            )
            return False

    def _record(self, session: Session, tenant_id: str, product_id: str) -> bool:
        attempts = max(1, get_settings().optimistic_retry_attempts)
        for _ in range(attempts):
            entitlement = self.repository.get(session, tenant_id, product_id)
            if entitlement is None or not entitlement.has_access:
                return False

            now = utcnow()
            values = {
                "last_accessed": now,
                "access_count": entitlement.access_count + 1,
                "total_actions": entitlement.total_actions + 1,
            }
            if self.repository.compare_and_set(session, entitlement.id, entitlement.row_version, values):
                break
            session.rollback()
            observe_write_conflict("usage")
        else:
            logger.warning("usage.write_conflict", extra={"tenant_id": tenant_id, "product_id": product_id})
            return False

        day_key, month_key = period_keys(now)
        self.repository.add_usage_period(session, entitlement.id, "day", day_key)
        self.repository.add_usage_period(session, entitlement.id, "month", month_key)

        self.product_repository.increment_counters(session, product_id, access_count=1)
        tenant = session.get(Tenant, tenant_id)
        organization_id = (tenant.organization_id if tenant is not None else None) or tenant_id
        self.product_repository.add_active_tenant(session, product_id, organization_id)

        session.commit()
        observe_usage_recorded(product_id)
        logger.debug("usage.recorded", extra={"tenant_id": tenant_id, "product_id": product_id})
        return True


usage_tracker = UsageTracker()
