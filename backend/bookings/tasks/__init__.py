"""
Celery Task Modules

Background tasks for booking processing:
- jobs.py: Expiry sweep and session reminders
"""

from bookings.tasks.jobs import expire_overdue_jobs, send_session_reminders

__all__ = [
    "expire_overdue_jobs",
    "send_session_reminders",
]
