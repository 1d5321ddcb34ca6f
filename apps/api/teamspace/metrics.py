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

store_requests_total = Counter(
    "workspace_store_requests_total",
    "Total persistence gateway requests by backend and outcome",
    ["backend", "verb", "collection", "outcome"],
)

store_request_duration_seconds = Histogram(
    "workspace_store_request_duration_seconds",
    "Persistence gateway request duration in seconds",
    ["backend", "collection"],
)

store_probe_total = Counter(
    "workspace_store_probe_total",
    "Backing store selection probes by selected backend",
    ["backend"],
)

activity_records_total = Counter(
    "workspace_activity_records_total",
    "Activity log records appended by action",
    ["action"],
)


_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")
_ENTITY_ID_RE = re.compile(r"/[a-z_]+-[0-9a-f]{32}\b")
_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _ENTITY_ID_RE.sub("/{id}", without_uuids)


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
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_store_request(backend: str, verb: str, collection: str, outcome: str, duration: float) -> None:
    store_requests_total.labels(backend=backend, verb=verb, collection=collection, outcome=outcome).inc()
    store_request_duration_seconds.labels(backend=backend, collection=collection).observe(duration)


def observe_store_probe(backend: str) -> None:
    store_probe_total.labels(backend=backend).inc()


def observe_activity_record(action: str) -> None:
    activity_records_total.labels(action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
