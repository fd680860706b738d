from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

entitlement_changes_total = Counter(
    "entitlement_changes_total",
    "Entitlement mutations by action",
    ["action", "product_id"],
)

entitlement_verifications_total = Counter(
    "entitlement_verifications_total",
    "Entitlement verification decisions",
    ["result"],
)

entitlement_write_conflicts_total = Counter(
    "entitlement_write_conflicts_total",
    "Optimistic write conflicts retried by entity",
    ["entity"],
)

usage_recorded_total = Counter(
    "usage_recorded_total",
    "Product accesses recorded by the usage tracker",
    ["product_id"],
)

usage_failures_total = Counter(
    "usage_failures_total",
    "Usage tracker failures swallowed",
)

quotation_transitions_total = Counter(
    "quotation_transitions_total",
    "Quotation status transitions",
    ["from_status", "to_status"],
)

notification_failures_total = Counter(
    "notification_failures_total",
    "Notification dispatch failures by stage",
    ["stage"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")
_ACCESS_LINK_RE = re.compile(r"^/products/access/[^/]+$")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    # Access links are bearer identifiers and must not become label values.
    if _ACCESS_LINK_RE.match(path):
        return "/products/access/{id}"
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_entitlement_change(action: str, product_id: str) -> None:
    entitlement_changes_total.labels(action=action, product_id=product_id).inc()


def observe_entitlement_verification(result: str) -> None:
    entitlement_verifications_total.labels(result=result).inc()


def observe_write_conflict(entity: str) -> None:
    entitlement_write_conflicts_total.labels(entity=entity).inc()


def observe_usage_recorded(product_id: str) -> None:
    usage_recorded_total.labels(product_id=product_id).inc()


def observe_usage_failure() -> None:
    usage_failures_total.inc()


def observe_quotation_transition(from_status: str, to_status: str) -> None:
    quotation_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def observe_notification_failure(stage: str) -> None:
    notification_failures_total.labels(stage=stage).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
