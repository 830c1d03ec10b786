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

field_registry_mutations_total = Counter(
    "field_registry_mutations_total",
    "Total field registry mutations by module and operation",
    ["module", "operation"],
)

field_snapshot_writes_total = Counter(
    "field_snapshot_writes_total",
    "Total field registry snapshot writes by status",
    ["status"],
)

field_snapshot_load_fallbacks_total = Counter(
    "field_snapshot_load_fallbacks_total",
    "Total snapshot loads that fell back to default fields",
    ["reason"],
)


_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    if path.startswith("/api/fields/{module}"):
        return path
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    return _INT_RE.sub("/{id}", path)


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


def observe_field_mutation(module: str, operation: str) -> None:
    field_registry_mutations_total.labels(module=module, operation=operation).inc()


def observe_snapshot_write(status: str) -> None:
    field_snapshot_writes_total.labels(status=status).inc()


def observe_snapshot_load_fallback(reason: str) -> None:
    field_snapshot_load_fallbacks_total.labels(reason=reason).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
