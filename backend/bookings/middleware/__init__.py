"""
Middleware Package

Contains FastAPI middleware for:
- Prometheus metrics collection
- Booking transition and notification counters
"""

from bookings.middleware.metrics import (
    ACTIVE_REQUESTS,
    BOOKING_TRANSITIONS,
    NOTIFICATIONS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    PrometheusMiddleware,
    setup_metrics,
)

__all__ = [
    "PrometheusMiddleware",
    "setup_metrics",
    "REQUEST_LATENCY",
    "REQUEST_COUNT",
    "ACTIVE_REQUESTS",
    "BOOKING_TRANSITIONS",
    "NOTIFICATIONS",
]
