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

order_transitions_total = Counter(
    "orderdesk_order_transitions_total",
    "Order status transitions by target status and outcome",
    ["to_status", "outcome"],
)

stock_postings_total = Counter(
    "orderdesk_stock_postings_total",
    "Inventory ledger postings by reason",
    ["reason"],
)

stock_rejections_total = Counter(
    "orderdesk_stock_rejections_total",
    "Inventory postings rejected for insufficient stock",
    ["reason"],
)

lead_conversions_total = Counter(
    "orderdesk_lead_conversions_total",
    "Lead to order conversion outcomes",
    ["outcome"],
)

low_stock_alerts_total = Counter(
    "orderdesk_low_stock_alerts_total",
    "Postings that left a product at or below its low-stock threshold",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_order_transition(to_status: str, outcome: str) -> None:
    order_transitions_total.labels(to_status=to_status, outcome=outcome).inc()


def observe_stock_posting(reason: str) -> None:
    stock_postings_total.labels(reason=reason).inc()


def observe_stock_rejection(reason: str) -> None:
    stock_rejections_total.labels(reason=reason).inc()


def observe_lead_conversion(outcome: str) -> None:
    lead_conversions_total.labels(outcome=outcome).inc()


def observe_low_stock_alert() -> None:
    low_stock_alerts_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
