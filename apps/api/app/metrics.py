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

month_close_runs_total = Counter(
    "month_close_runs_total",
    "Total month-close runs by trigger and outcome",
    ["trigger", "outcome"],
)

month_close_duration_seconds = Histogram(
    "month_close_duration_seconds",
    "Month-close run duration in seconds",
    ["trigger"],
)

month_close_archived_deals_total = Counter(
    "month_close_archived_deals_total",
    "Total deals moved to the archive by month-close",
)

snapshot_recomputations_total = Counter(
    "snapshot_recomputations_total",
    "Total forecast snapshot writes by kind",
    ["kind"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        for attribute in ("path_format", "path"):
            template = getattr(route, attribute, None)
            if isinstance(template, str) and template:
                return template
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_month_close(trigger: str, outcome: str, duration: float, archived_count: int = 0) -> None:
    month_close_runs_total.labels(trigger=trigger, outcome=outcome).inc()
    month_close_duration_seconds.labels(trigger=trigger).observe(duration)
    if archived_count > 0:
        month_close_archived_deals_total.inc(archived_count)


def observe_snapshot_write(kind: str) -> None:
    snapshot_recomputations_total.labels(kind=kind).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
