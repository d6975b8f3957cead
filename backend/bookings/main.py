"""
Booking Service API - Main Application Entry Point

This module initializes the FastAPI application with:
- Logging configuration
- Database schema initialization
- BookingService wiring (stored on app.state)
- Prometheus metrics middleware and /metrics endpoint
- API router registration

Architecture:
    FastAPI App
    ├── Lifespan Management (startup)
    ├── CORS Middleware
    ├── Prometheus Middleware
    └── API Router
        └── /bookings - Booking lifecycle use cases
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookings.api import api_router
from bookings.config import get_settings
from bookings.database import init_db
from bookings.logging_config import configure_logging
from bookings.middleware.metrics import setup_metrics
from bookings.services.factory import get_booking_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.

    Startup:
        1. Configure logging
        2. Initialize database tables
        3. Build the BookingService unless one was injected (tests)

    Yields:
        Control to the application during its runtime
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    await init_db()
    if getattr(app.state, "booking_service", None) is None:
        app.state.booking_service = get_booking_service(settings)
    yield


app = FastAPI(
    title="Booking Service API",
    description="Interpreter booking lifecycle, matching and notifications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_metrics(app)
app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
