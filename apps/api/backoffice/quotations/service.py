from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from backoffice import audit, events
from backoffice.core.config import get_settings
from backoffice.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from backoffice.metrics import observe_quotation_transition, observe_write_conflict
from backoffice.notifications.schemas import NotificationEvent
from backoffice.notifications.service import NotificationService
from backoffice.platform.security.context import AuthContext
from backoffice.quotations.models import Quotation, Service
from backoffice.quotations.schemas import (
    QuotationCreate,
    QuotationRead,
    QuotationStats,
    QuotationStatusUpdate,
    ServiceCreate,
    ServiceDeleteResult,
    ServiceRead,
)
from backoffice.quotations.workflow import PENDING, STATUSES, notification_for, plan_transition
from backoffice.tenants.service import get_tenant_or_404

logger = logging.getLogger("backoffice.quotations")
tracer = trace.get_tracer("backoffice.quotations")

QUOTATIONS_LINK = "/admin/services?tab=quotations"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _quotation_snapshot(quotation: Quotation) -> dict[str, Any]:
    return {
        "status": quotation.status,
        "final_price": str(quotation.final_price) if quotation.final_price is not None else None,
        "rejection_reason": quotation.rejection_reason,
        "row_version": quotation.row_version,
    }


@dataclass(slots=True)
class ServiceCatalogService:
    def create_service(self, session: Session, ctx: AuthContext, dto: ServiceCreate) -> ServiceRead:
        if not ctx.is_operator:
            raise ForbiddenError("Operator role required")
        service = Service(**dto.model_dump(mode="python"), created_by=ctx.user_id)
        session.add(service)
        session.commit()
        session.refresh(service)
        return ServiceRead.model_validate(service)

    def list_services(self, session: Session, *, include_inactive: bool = False) -> list[ServiceRead]:
        stmt = select(Service)
        if not include_inactive:
            stmt = stmt.where(Service.is_active.is_(True))
        rows = session.scalars(stmt.order_by(Service.name.asc())).all()
        return [ServiceRead.model_validate(row) for row in rows]

    def delete_service(self, session: Session, ctx: AuthContext, service_id: uuid.UUID) -> ServiceDeleteResult:
        if not ctx.is_operator:
            raise ForbiddenError("Operator role required")
        service = session.get(Service, service_id)
        if service is None:
            raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND")

        quotation_count = int(
            session.scalar(select(func.count()).select_from(Quotation).where(Quotation.service_id == service_id)) or 0
        )
        if quotation_count > 0:
            service.is_active = False
            session.commit()
            return ServiceDeleteResult(
                id=service_id,
                deleted=False,
                deactivated=True,
                message="Service has existing quotations. Marked as inactive instead of deleting.",
            )

        session.delete(service)
        session.commit()
        return ServiceDeleteResult(id=service_id, deleted=True, deactivated=False, message="Service deleted")


@dataclass(slots=True)
class QuotationService:
    notifications: NotificationService = field(default_factory=NotificationService)

    def create_quotation(self, session: Session, ctx: AuthContext, dto: QuotationCreate) -> QuotationRead:
        if not ctx.is_tenant or not ctx.tenant_id:
            raise ForbiddenError("Only tenants can request quotations")
        tenant = get_tenant_or_404(session, ctx.tenant_id)

        service = session.get(Service, dto.service_id)
        if service is None:
            raise NotFoundError("Service not found", code="SERVICE_NOT_FOUND", details={"service_id": str(dto.service_id)})
        if not service.is_active:
            raise ValidationError("Service is not available for quotation", code="SERVICE_INACTIVE")

        details = dto.enterprise_details.model_dump(exclude_none=True) if dto.enterprise_details is not None else {}
        details.setdefault("company_name", tenant.company_name)
        details.setdefault("contact_person", tenant.contact_name)
        details.setdefault("email", tenant.email)
        details = {key: value for key, value in details.items() if value is not None}

        now = utcnow()
        quotation = Quotation(
            tenant_id=tenant.id,
            service_id=service.id,
            status=PENDING,
            request_details=dto.request_details,
            custom_requirements=dto.custom_requirements,
            enterprise_details=details,
            requested_price=dto.requested_price if dto.requested_price is not None else service.price,
            created_at=now,
            updated_at=now,
        )
        session.add(quotation)
        session.commit()
        session.refresh(quotation)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="quotation",
            entity_id=str(quotation.id),
            action="create",
            before=None,
            after=_quotation_snapshot(quotation),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "quotation.requested",
                "occurred_at": now.isoformat(),
                "actor_user_id": ctx.user_id,
                "payload": {"quotation_id": str(quotation.id), "tenant_id": tenant.id, "service_id": str(service.id)},
            }
        )
        logger.info("quotation.requested", extra={"quotation_id": str(quotation.id), "tenant_id": tenant.id})
        return QuotationRead.model_validate(quotation)

    def list_quotations(self, session: Session, ctx: AuthContext, *, status: str | None = None) -> list[QuotationRead]:
        stmt = select(Quotation)
        if not ctx.is_operator:
            if not ctx.is_tenant or not ctx.tenant_id:
                raise ForbiddenError("Operator or tenant role required")
            stmt = stmt.where(Quotation.tenant_id == ctx.tenant_id)
        if status is not None:
            stmt = stmt.where(Quotation.status == status)
        rows = session.scalars(stmt.order_by(Quotation.created_at.desc())).all()
        return [QuotationRead.model_validate(row) for row in rows]

    def get_quotation(self, session: Session, ctx: AuthContext, quotation_id: uuid.UUID) -> QuotationRead:
        quotation = self._get_or_404(session, quotation_id)
        if not ctx.is_operator and quotation.tenant_id != ctx.tenant_id:
            raise ForbiddenError("Tenants can only read their own quotations")
        return QuotationRead.model_validate(quotation)

    def stats(self, session: Session, ctx: AuthContext) -> QuotationStats:
        if not ctx.is_operator:
            raise ForbiddenError("Operator role required")
        rows = session.execute(select(Quotation.status, func.count()).group_by(Quotation.status)).all()
        counts = {status: 0 for status in STATUSES}
        for status, count in rows:
            counts[status] = int(count)
        return QuotationStats(total=sum(counts.values()), **counts)

    def transition(
        self,
        session: Session,
        ctx: AuthContext,
        quotation_id: uuid.UUID,
        dto: QuotationStatusUpdate,
    ) -> QuotationRead:
        if not ctx.is_operator:
            raise ForbiddenError("Operator role required")

        attempts = max(1, get_settings().optimistic_retry_attempts)
        with tracer.start_as_current_span("quotation.transition") as span:
            span.set_attribute("quotation_id", str(quotation_id))
            span.set_attribute("to_status", dto.status)

            for _ in range(attempts):
                quotation = self._get_or_404(session, quotation_id)
                before = _quotation_snapshot(quotation)
                from_status = quotation.status
                changes = plan_transition(
                    from_status,
                    dto.status,
                    now=utcnow(),
                    final_price=dto.final_price,
                    rejection_reason=dto.rejection_reason,
                    superadmin_notes=dto.superadmin_notes,
                    proposed_delivery_date=dto.proposed_delivery_date,
                )
                result = session.execute(
                    update(Quotation)
                    .where(and_(Quotation.id == quotation_id, Quotation.row_version == quotation.row_version))
                    .values(**changes, row_version=Quotation.row_version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    break
                session.rollback()
                observe_write_conflict("quotation")
            else:
                raise ConflictError("Quotation was modified concurrently", code="QUOTATION_WRITE_CONFLICT")

            session.commit()
            quotation = self._get_or_404(session, quotation_id)
            span.set_attribute("from_status", from_status)

        audit.record(
            actor_user_id=ctx.user_id,
            entity_type="quotation",
            entity_id=str(quotation.id),
            action="transition",
            before=before,
            after=_quotation_snapshot(quotation),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": f"quotation.{quotation.status}",
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": ctx.user_id,
                "correlation_id": ctx.correlation_id,
                "payload": {
                    "quotation_id": str(quotation.id),
                    "tenant_id": quotation.tenant_id,
                    "from_status": from_status,
                    "to_status": quotation.status,
                },
            }
        )
        observe_quotation_transition(from_status, quotation.status)
        logger.info(
            "quotation.transitioned",
            extra={
                "quotation_id": str(quotation.id),
                "from_status": from_status,
                "to_status": quotation.status,
                "actor": ctx.user_id,
            },
        )
        self._notify(session, quotation)
        return QuotationRead.model_validate(quotation)

    def _notify(self, session: Session, quotation: Quotation) -> None:
        service = session.get(Service, quotation.service_id)
        title, message, severity = notification_for(
            quotation.status,
            service.name if service is not None else "your requested service",
            final_price=quotation.final_price,
            rejection_reason=quotation.rejection_reason,
        )
        self.notifications.dispatch(
            session,
            NotificationEvent(
                tenant_id=quotation.tenant_id,
                title=title,
                message=message,
                type=severity,
                link=QUOTATIONS_LINK,
                related_model="Quotation",
                related_id=str(quotation.id),
            ),
        )

    def _get_or_404(self, session: Session, quotation_id: uuid.UUID) -> Quotation:
        quotation = session.get(Quotation, quotation_id, populate_existing=True)
        if quotation is None:
            raise NotFoundError(
                "Quotation not found", code="QUOTATION_NOT_FOUND", details={"quotation_id": str(quotation_id)}
            )
        return quotation


service_catalog = ServiceCatalogService()
quotation_service = QuotationService()
