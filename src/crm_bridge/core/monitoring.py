"""Prometheus metrics, Sentry integration, and sync run tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- init_sentry(): Initialize Sentry for the FastAPI app
- track_sync_run(): Context manager recording sync run outcome and duration
- Sync counters for cohorts, remote creations, and write-backs
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_runs_total = Counter(
    "contact_sync_runs_total",
    "Contact sync runs by direction and outcome",
    ["direction", "status"],
)

sync_run_duration_seconds = Histogram(
    "contact_sync_run_duration_seconds",
    "Contact sync run duration in seconds",
    ["direction"],
    buckets=(0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0),
)

sync_cohorts_total = Counter(
    "contact_sync_cohorts_total",
    "Outbound cohorts processed by outcome",
    ["status"],
)

remote_contacts_created_total = Counter(
    "contact_sync_remote_created_total",
    "Contacts created in HubSpot by outbound sync",
)

remote_ids_written_total = Counter(
    "contact_sync_remote_ids_written_total",
    "HubSpot ids persisted onto local contacts",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency per matched route.

    Unmatched paths are folded into a single "unmatched" label so scanners
    cannot blow up label cardinality. /metrics is not counted.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or "unmatched"
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()
        http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
            elapsed
        )
        return response


# ── Sync Run Helper ──────────────────────────────────────────────────────────


@asynccontextmanager
async def track_sync_run(direction: str) -> AsyncGenerator[None, None]:
    """Record the duration and success/error status of a sync run.

    Usage:
        async with track_sync_run("outbound"):
            ...
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        sync_runs_total.labels(direction=direction, status=status).inc()
        sync_run_duration_seconds.labels(direction=direction).observe(
            time.perf_counter() - start_time
        )


# ── Sentry Integration ───────────────────────────────────────────────────────

# Headers that carry HubSpot or token service credentials
_SCRUBBED_HEADERS = frozenset({"authorization", "cookie"})


def _scrub_credentials(event: dict, hint: dict) -> dict:
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _SCRUBBED_HEADERS:
                headers[name] = "[Filtered]"
    return event


def init_sentry(dsn: str, environment: str, customer_id: str | None = None) -> None:
    """Initialize Sentry for the FastAPI app, tagging events with the customer.

    Authorization headers are filtered out of every event before sending.
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        before_send=_scrub_credentials,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    if customer_id:
        sentry_sdk.set_tag("customer_id", customer_id)


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Prometheus exposition of the default registry."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
