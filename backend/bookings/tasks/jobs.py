"""
Background Tasks for Booking Processing

Celery tasks acting as the external scheduler of the booking lifecycle:
- Expiring pending jobs past their will_expire_at deadline and telling
  the customers about it
- Sending session reminders to translators of upcoming assigned jobs

Tasks hold no business rules; they select jobs through the store and
call BookingService. All tasks support:
- Automatic retries on failure
- Prometheus metrics
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Coroutine, Dict

from prometheus_client import Counter, Histogram

from bookings.celery import celery_app

logger = logging.getLogger(__name__)

# ==================== Prometheus Metrics ====================

TASK_DURATION = Histogram(
    "celery_task_duration_seconds",
    "Time spent executing Celery tasks",
    ["task_name"]
)

TASK_FAILURES = Counter(
    "celery_task_failures_total",
    "Number of Celery task failures",
    ["task_name"]
)

JOBS_EXPIRED = Counter(
    "bookings_expired_total",
    "Number of pending bookings moved to timedout"
)

REMINDERS_SENT = Counter(
    "session_reminders_total",
    "Number of session reminders dispatched"
)


# ==================== Helper Functions ====================

_service = None


def get_service():
    """Get or build the BookingService used by the worker."""
    global _service
    if _service is None:
        from bookings.config import get_settings
        from bookings.services.factory import get_booking_service

        _service = get_booking_service(get_settings())
    return _service


def run_async(coro: Coroutine):
    """Run a coroutine to completion on a private event loop (Celery workers are sync)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def expire_overdue(service) -> Dict[str, int]:
    stats = {"expired": 0, "notified": 0, "failed": 0}
    now = service.clock.now()
    for job in await service.store.find_expired_jobs(now):
        result = await service.expire(job.id)
        if not result.ok:
            # Accepted or cancelled since it was selected
            logger.info(f"Job {job.id} not expired: {result.message}")
            stats["failed"] += 1
            continue
        stats["expired"] += 1
        JOBS_EXPIRED.inc()

        notified = await service.send_expired_notification(job.id)
        if notified.ok and notified.notifications.ok:
            stats["notified"] += 1
    return stats


async def remind_upcoming(service, window_minutes: int) -> Dict[str, int]:
    stats = {"reminded": 0, "failed": 0}
    now = service.clock.now()
    for job in await service.store.find_jobs_due_between(now, now + timedelta(minutes=window_minutes)):
        result = await service.send_session_reminder(job.id)
        if result.ok and result.notifications.ok:
            stats["reminded"] += 1
            REMINDERS_SENT.inc()
        else:
            stats["failed"] += 1
    return stats


# ==================== Celery Tasks ====================

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def expire_overdue_jobs(self) -> dict:
    """
    Move pending jobs past will_expire_at to timedout.

    Each expired job's customer receives a job-expired push.

    Returns:
        Dict with expiry statistics
    """
    start_time = time.time()
    try:
        stats = run_async(expire_overdue(get_service()))
        logger.info(f"Expiry sweep: {stats}")
        return stats

    except Exception as exc:
        TASK_FAILURES.labels(task_name="expire_overdue_jobs").inc()
        logger.error(f"Task failed: {exc}")
        raise self.retry(exc=exc, countdown=60)

    finally:
        duration = time.time() - start_time
        TASK_DURATION.labels(task_name="expire_overdue_jobs").observe(duration)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_session_reminders(self, window_minutes: int = 60) -> dict:
    """
    Remind assigned translators of sessions starting within the window.

    Args:
        window_minutes: How far ahead to look for assigned jobs

    Returns:
        Dict with reminder statistics
    """
    start_time = time.time()
    try:
        stats = run_async(remind_upcoming(get_service(), window_minutes))
        logger.info(f"Session reminders: {stats}")
        return stats

    except Exception as exc:
        TASK_FAILURES.labels(task_name="send_session_reminders").inc()
        logger.error(f"Task failed: {exc}")
        raise self.retry(exc=exc, countdown=60)

    finally:
        duration = time.time() - start_time
        TASK_DURATION.labels(task_name="send_session_reminders").observe(duration)
