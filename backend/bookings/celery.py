"""
Celery Application Configuration

Configures Celery for background booking processing with:
- Redis as message broker and result backend
- Task autodiscovery from bookings.tasks
- Beat schedule acting as the external scheduler for expiry and
  session reminders

Usage:
    # Start worker:
    celery -A bookings.celery worker --loglevel=info

    # Start beat scheduler (for periodic tasks):
    celery -A bookings.celery beat --loglevel=info
"""

from celery import Celery

from bookings.config import get_settings

settings = get_settings()

celery_app = Celery(
    "bookings",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.timezone,
    enable_utc=True,

    worker_prefetch_multiplier=1,  # Fair task distribution
    worker_concurrency=4,

    result_expires=3600,
    task_track_started=True,

    # Acknowledge after completion so a lost worker reruns the sweep
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    task_default_queue="default",

    beat_schedule={
        "expire-overdue-jobs": {
            "task": "bookings.tasks.jobs.expire_overdue_jobs",
            "schedule": settings.expiry_sweep_minutes * 60.0,
        },
        "send-session-reminders": {
            "task": "bookings.tasks.jobs.send_session_reminders",
            "schedule": settings.reminder_window_minutes * 60.0,
            "kwargs": {"window_minutes": settings.reminder_window_minutes},
        },
    },
)

celery_app.autodiscover_tasks(["bookings.tasks"])
