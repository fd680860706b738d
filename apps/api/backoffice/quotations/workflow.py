"""Quotation status machine.

``pending`` is the initial state. ``approved`` leads to ``completed``.
``rejected`` and ``completed`` are terminal. Guards run before any mutation
and are evaluated in a fixed order: terminal lock, required fields, then
edge legality.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from backoffice.errors import InvalidTransitionError, ValidationError

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
COMPLETED = "completed"

STATUSES = (PENDING, APPROVED, REJECTED, COMPLETED)
TERMINAL_STATUSES = frozenset({REJECTED, COMPLETED})

# pending -> pending only edits notes and delivery date.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PENDING, APPROVED, REJECTED}),
    APPROVED: frozenset({COMPLETED}),
    REJECTED: frozenset(),
    COMPLETED: frozenset(),
}

NOTIFICATION_SEVERITY = {
    APPROVED: "success",
    COMPLETED: "success",
    REJECTED: "error",
}


def plan_transition(
    current: str,
    target: str,
    *,
    now: datetime,
    final_price: Decimal | None = None,
    rejection_reason: str | None = None,
    superadmin_notes: str | None = None,
    proposed_delivery_date: datetime | None = None,
) -> dict[str, Any]:
    """Returns the column changes for ``current -> target`` or raises."""
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"{current.capitalize()} quotations cannot be modified",
            code="QUOTATION_TERMINAL",
            details={"status": current},
        )
    if target not in STATUSES:
        raise ValidationError(f"Unknown quotation status: {target}", code="INVALID_STATUS", details={"status": target})

    if target == APPROVED and (final_price is None or final_price <= 0):
        raise ValidationError(
            "Final price is required when approving a quotation",
            code="FINAL_PRICE_REQUIRED",
            details={"final_price": str(final_price) if final_price is not None else None},
        )
    reason = (rejection_reason or "").strip()
    if target == REJECTED and not reason:
        raise ValidationError(
            "Rejection reason is required when rejecting a quotation",
            code="REJECTION_REASON_REQUIRED",
        )

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move quotation from {current} to {target}",
            details={"from_status": current, "to_status": target},
        )

    changes: dict[str, Any] = {"status": target, "updated_at": now}
    if superadmin_notes:
        changes["superadmin_notes"] = superadmin_notes
    if target == APPROVED:
        changes["final_price"] = final_price
        changes["approved_date"] = now
        changes["proposed_delivery_date"] = proposed_delivery_date or now
    elif target == REJECTED:
        changes["rejection_reason"] = reason
    elif target == COMPLETED:
        changes["completed_date"] = now
    elif proposed_delivery_date is not None:
        changes["proposed_delivery_date"] = proposed_delivery_date
    return changes


def notification_for(status: str, service_name: str, *, final_price: Decimal | None, rejection_reason: str | None) -> tuple[str, str, str]:
    """Title, message and severity sent to the owning tenant."""
    if status == APPROVED:
        message = f"Your quotation for {service_name} has been approved with a final price of ${final_price:.2f}"
    elif status == REJECTED:
        message = f"Your quotation for {service_name} has been rejected. Reason: {rejection_reason}"
    elif status == COMPLETED:
        message = f"Your quotation for {service_name} has been marked as completed"
    else:
        message = f"Your quotation for {service_name} has been updated to {status}"
    return f"Quotation {status.capitalize()}", message, NOTIFICATION_SEVERITY.get(status, "info")
