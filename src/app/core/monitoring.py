"""Prometheus metrics, Sentry integration, and sync run tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- init_sentry(): Initialize Sentry with company-aware before_send callback
- track_sync_run(): Context manager for sync run metrics
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

COMPANY_HEADER = "X-Company-ID"

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "company_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "company_id"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_runs_total = Counter(
    "sync_runs_total",
    "Total sync runs by provider, direction and outcome",
    ["provider", "direction", "status"],
)

sync_records_total = Counter(
    "sync_records_total",
    "Records processed by sync runs",
    ["provider", "outcome"],
)

sync_run_duration_seconds = Histogram(
    "sync_run_duration_seconds",
    "Sync run duration in seconds",
    ["provider", "direction"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Reads company_id from the X-Company-ID header (if present) and records
    request count and duration per method/endpoint/company.
    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        company_id = request.headers.get(COMPANY_HEADER) or "unknown"
        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            company_id=company_id,
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
            company_id=company_id,
        ).observe(duration)

        return response


# ── Sync Metrics Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_sync_run(
    provider: str,
    direction: str,
) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks sync run metrics.

    Usage:
        async with track_sync_run("hubspot", "inbound") as tracker:
            result = await engine.run(...)
            tracker["status"] = "completed"
            tracker["created"] = result.created

    Automatically records:
    - Duration in histogram
    - Run count by status ("error" when the body raises)
    - Record counts for created/updated/skipped (if set in tracker dict)
    """
    tracker: dict[str, Any] = {
        "status": "completed",
        "created": 0,
        "updated": 0,
        "skipped": 0,
    }
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time

        sync_runs_total.labels(
            provider=provider,
            direction=direction,
            status=tracker["status"],
        ).inc()

        sync_run_duration_seconds.labels(
            provider=provider,
            direction=direction,
        ).observe(duration)

        for outcome in ("created", "updated", "skipped"):
            if tracker.get(outcome):
                sync_records_total.labels(
                    provider=provider,
                    outcome=outcome,
                ).inc(tracker[outcome])


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with company-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add company and request context bound by LoggingMiddleware."""
        context = structlog.contextvars.get_contextvars()
        tags = event.setdefault("tags", {})
        for key in ("company_id", "request_id"):
            if context.get(key):
                tags[key] = context[key]
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
