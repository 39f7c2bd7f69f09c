# Centralized Prometheus metrics. Middleware below records timing
# and counts for every request; the metering code bumps the domain
# counters so dashboards can follow ingestion and quota actions.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_DURATION_MS = Histogram(
    "quotaflow_request_duration_ms",
    "HTTP request latency in milliseconds",
    ["method", "route"],
    buckets=[5, 25, 100, 250, 500, 1000, 2500, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "quotaflow_requests_total",
    "HTTP requests by route and status",
    ["method", "route", "status_code"],
)

# Usage events by ingestion outcome (created|duplicate).
USAGE_EVENTS_TOTAL = Counter(
    "quotaflow_usage_events_total",
    "Document usage events received",
    ["outcome"],
)

# One increment per scenario start/stop call against the workflow platform.
SCENARIO_ACTIONS_TOTAL = Counter(
    "quotaflow_scenario_actions_total",
    "Workflow scenario start/stop calls",
    ["action", "outcome"],
)

QUOTA_TRANSITIONS_TOTAL = Counter(
    "quotaflow_quota_transitions_total",
    "Tenant paused/running transitions",
    ["direction", "trigger"],
)

# Pipeline events by reporting source and ingestion outcome.
SOURCE_EVENTS_TOTAL = Counter(
    "quotaflow_source_events_total",
    "Pipeline usage events received",
    ["source", "outcome"],
)

MONTHLY_RESETS_TOTAL = Counter(
    "quotaflow_monthly_resets_total",
    "Billing period rollovers applied to tenants",
)


def record_usage_event(outcome: str) -> None:
    USAGE_EVENTS_TOTAL.labels(outcome=outcome).inc()


def record_source_event(source: str, outcome: str) -> None:
    SOURCE_EVENTS_TOTAL.labels(source=source, outcome=outcome).inc()


def record_scenario_action(action: str, outcome: str) -> None:
    SCENARIO_ACTIONS_TOTAL.labels(action=action, outcome=outcome).inc()


def record_quota_transition(direction: str, trigger: str) -> None:
    QUOTA_TRANSITIONS_TOTAL.labels(direction=direction, trigger=trigger).inc()


def record_monthly_reset() -> None:
    MONTHLY_RESETS_TOTAL.inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        duration_ms = (monotonic() - start) * 1000.0
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response
