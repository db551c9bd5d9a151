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

approval_transitions_total = Counter(
    "approval_transitions_total",
    "Approval lifecycle transitions by module and action",
    ["module", "action"],
)

approval_chain_edits_total = Counter(
    "approval_chain_edits_total",
    "Structural approval chain edits by operation",
    ["operation"],
)

approval_resolution_total = Counter(
    "approval_resolution_total",
    "Approval chain resolutions by module and precedence source",
    ["module", "source"],
)

audit_tracks_written_total = Counter(
    "audit_tracks_written_total",
    "Activity tracks written by entity kind and action",
    ["entity_kind", "action"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Failed audit trail writes by entity kind",
    ["entity_kind"],
)

recurrence_occurrences_total = Counter(
    "recurrence_occurrences_total",
    "Recurrence materialization outcomes",
    ["outcome"],
)

tenant_denied_writes_total = Counter(
    "tenant_denied_writes_total",
    "Writes rejected for targeting another tenant",
    ["resource"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def _with_mount_prefix(root_path: str, template: str) -> str:
    # routers mounted under a prefix report their local template; root_path carries the prefix
    prefix = root_path.rstrip("/")
    if not prefix or template.startswith(prefix + "/") or template == prefix:
        return template
    return prefix + template


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    root_path = request.scope.get("root_path") or ""
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _with_mount_prefix(root_path, path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _with_mount_prefix(root_path, route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_approval_transition(module: str, action: str) -> None:
    approval_transitions_total.labels(module=module, action=action).inc()


def observe_chain_edit(operation: str) -> None:
    approval_chain_edits_total.labels(operation=operation).inc()


def observe_chain_resolution(module: str, source: str) -> None:
    approval_resolution_total.labels(module=module, source=source).inc()


def observe_audit_track(entity_kind: str, action: str) -> None:
    audit_tracks_written_total.labels(entity_kind=entity_kind, action=action).inc()


def observe_audit_failure(entity_kind: str) -> None:
    audit_write_failures_total.labels(entity_kind=entity_kind).inc()


def observe_recurrence(outcome: str, count: int = 1) -> None:
    if count > 0:
        recurrence_occurrences_total.labels(outcome=outcome).inc(count)


def observe_tenant_denied_write(resource: str) -> None:
    tenant_denied_writes_total.labels(resource=resource).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
