"""
Prometheus Metrics Middleware

Provides request/response and booking metrics for monitoring:
- HTTP request latency and count by endpoint and status
- Active request gauge
- Booking status transitions by edge
- Notifications sent/failed by channel

Usage:
    from bookings.middleware.metrics import setup_metrics

    # In main.py
    app = FastAPI()
    setup_metrics(app)

Metrics Endpoint:
    GET /metrics - Prometheus-format metrics
"""

import logging
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

logger = logging.getLogger(__name__)

# ==================== Prometheus Metrics ====================

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint", "status"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Number of active HTTP requests",
    ["method", "endpoint"]
)

BOOKING_TRANSITIONS = Counter(
    "booking_transitions_total",
    "Committed booking status transitions",
    ["from", "to"]
)

NOTIFICATIONS = Counter(
    "notifications_total",
    "Notification deliveries per recipient",
    ["channel", "outcome"]  # outcome: sent, failed
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for Prometheus metrics collection.

    Records:
    - Request latency
    - Request count by status code
    - Active request count
    """

    def __init__(self, app: FastAPI, app_name: str = "bookings"):
        super().__init__(app)
        self.app_name = app_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        endpoint = self._get_endpoint(request)
        method = request.method

        if endpoint == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status = str(response.status_code)
        except Exception as e:
            status = "500"
            logger.error(f"Request error: {e}")
            raise
        finally:
            duration = time.perf_counter() - start_time
            REQUEST_LATENCY.labels(method=method, endpoint=endpoint, status=status).observe(duration)
            REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
            ACTIVE_REQUESTS.labels(method=method, endpoint=endpoint).dec()

        return response

    def _get_endpoint(self, request: Request) -> str:
        """
        Get normalized endpoint path from request.

        Uses the route pattern (e.g., /bookings/{job_id}) instead of the
        actual path to avoid high cardinality.
        """
        route = request.scope.get("route")
        if getattr(route, "path", None):
            return route.path
        for route in request.app.routes:
            match, child_scope = route.matches(request.scope)
            if match != Match.FULL:
                continue
            # Included routers carry no path; the matched route is in the child scope
            path = getattr(child_scope.get("route", route), "path", None)
            if path:
                return path
        return request.url.path


def metrics_endpoint(request: Request) -> Response:
    return PlainTextResponse(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST
    )


def setup_metrics(app: FastAPI) -> None:
    """
    Configure Prometheus metrics for FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(PrometheusMiddleware, app_name="bookings")
    app.add_route("/metrics", metrics_endpoint, methods=["GET"])
    logger.info("Prometheus metrics configured")


# ==================== Helper Functions ====================

def record_transition(from_status: str, to_status: str) -> None:
    """Record a committed status transition."""
    BOOKING_TRANSITIONS.labels(**{"from": from_status, "to": to_status}).inc()


def record_notification(channel: str, outcome: str, count: int = 1) -> None:
    """Record `count` notification deliveries with the given outcome."""
    if count > 0:
        NOTIFICATIONS.labels(channel=channel, outcome=outcome).inc(count)
