from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from backoffice.context import get_correlation_id

audit_entries: list[dict[str, Any]] = []

_SECRET_KEYS = {"access_token"}


def _redact(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {key: ("***" if key in _SECRET_KEYS and value else value) for key, value in snapshot.items()}


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> None:
    resolved_correlation_id = correlation_id or get_correlation_id()
    audit_entries.append(
        {
            "id": str(uuid.uuid4()),
            "actor_user_id": actor_user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "before": _redact(before),
            "after": _redact(after),
            "correlation_id": resolved_correlation_id,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
    )
