"""
Service Wiring

Builds a BookingService with every collaborator injected. The hosting
process (FastAPI lifespan, Celery task) owns the result; the engine and
its helpers never create their own clocks, gateways or stores.
"""

from typing import Optional

from bookings.config import Settings
from bookings.services.booking import BookingService
from bookings.services.dispatcher import NotificationDispatcher
from bookings.services.gateways import (
    HttpSmsGateway,
    Mailer,
    OneSignalPushGateway,
    PushGateway,
    SmsGateway,
    SmtpMailer,
)
from bookings.services.lifecycle import LifecycleEngine
from bookings.services.matcher import TranslatorMatcher
from bookings.services.notifier import JobEventNotifier
from bookings.services.store import Store
from bookings.services.timeutils import Clock, SystemClock


def get_booking_service(
    settings: Settings,
    store: Optional[Store] = None,
    clock: Optional[Clock] = None,
    mailer: Optional[Mailer] = None,
    sms: Optional[SmsGateway] = None,
    push: Optional[PushGateway] = None,
) -> BookingService:
    """
    Factory function assembling the booking service.

    Args:
        settings: Application settings
        store: Store implementation; defaults to the SQLAlchemy store on
            the configured database
        clock/mailer/sms/push: Optional overrides (tests, local runs)

    Returns:
        BookingService ready for use
    """
    if store is None:
        from bookings.database import async_session
        from bookings.services.sql_store import SqlAlchemyStore

        store = SqlAlchemyStore(async_session)

    clock = clock or SystemClock(settings.timezone)
    mailer = mailer or SmtpMailer(
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_user,
        settings.smtp_password,
        settings.mail_from,
    )
    sms = sms or HttpSmsGateway(settings.sms_api_url, settings.sms_api_username, settings.sms_api_password)
    push = push or OneSignalPushGateway(settings.push_api_url, settings.push_app_id, settings.push_api_key)

    matcher = TranslatorMatcher(
        store,
        clock,
        night_start_hour=settings.night_start_hour,
        business_start_hour=settings.business_start_hour,
        town_check_override=settings.town_check_override,
    )
    dispatcher = NotificationDispatcher(
        mailer,
        sms,
        push,
        sms_from_number=settings.sms_from_number,
        push_title=settings.push_title,
        timeout=settings.dispatch_timeout_seconds,
        max_parallel=settings.dispatch_max_parallel,
    )
    notifier = JobEventNotifier(store, dispatcher, matcher, business_start_hour=settings.business_start_hour)
    engine = LifecycleEngine(
        clock,
        translator_cancel_cutoff_hours=settings.translator_cancel_cutoff_hours,
        customer_withdraw_hours=settings.customer_withdraw_hours,
        support_phone=settings.support_phone,
    )
    return BookingService(
        store,
        engine,
        matcher,
        notifier,
        clock,
        immediate_minutes=settings.immediate_minutes,
        timezone=settings.timezone,
    )
