"""
Shared fixtures: a seeded in-memory store, a pinned clock and recording
fakes for the mail/SMS/push gateways.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from bookings.config import Settings
from bookings.services.domain import (
    Assignment,
    ConsumerType,
    Gender,
    Job,
    JobType,
    Language,
    TranslatorLevel,
    TranslatorType,
    User,
    UserRole,
)
from bookings.services.factory import get_booking_service
from bookings.services.gateways import DeliveryStatus, PushPayload
from bookings.services.store import InMemoryStore
from bookings.services.timeutils import FixedClock

# Monday 2026-03-02 12:00, well inside business hours
NOW = datetime(2026, 3, 2, 12, 0, 0)

ARABIC = 1
PERSIAN = 2

CUSTOMER = 1
NGO_CUSTOMER = 2
ADMIN = 100
TRANSLATOR = 10
TRANSLATOR_2 = 11
VOLUNTEER = 12
SUSPENDED = 13
SILENT = 14
NIGHT_OWL = 15


class RecordingMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: set = set()

    async def send(self, to_email, to_name, subject, template_kind, context):
        if to_email in self.fail_for:
            raise ConnectionError(f"SMTP refused {to_email}")
        self.sent.append({
            "to": to_email,
            "name": to_name,
            "subject": subject,
            "kind": template_kind,
            "context": context,
        })

    def kinds_for(self, email: str) -> List[str]:
        return [m["kind"] for m in self.sent if m["to"] == email]


class RecordingSms:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.undelivered: set = set()

    async def send(self, from_number, to_number, body):
        self.sent.append({"from": from_number, "to": to_number, "body": body})
        if to_number in self.undelivered:
            return DeliveryStatus(False, "rejected")
        return DeliveryStatus(True, "ok")


class RecordingPush:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail_for: set = set()
        self.slow_for: set = set()

    async def send(self, recipient_tags, payload: PushPayload, send_after: Optional[datetime] = None):
        if any(tag in self.slow_for for tag in recipient_tags):
            await asyncio.sleep(10)
        if any(tag in self.fail_for for tag in recipient_tags):
            raise RuntimeError("push gateway error")
        self.sent.append({"tags": list(recipient_tags), "payload": payload, "send_after": send_after})
        return {"id": f"push-{len(self.sent)}", "recipients": len(recipient_tags)}

    def tags(self) -> List[str]:
        return [tag for call in self.sent for tag in call["tags"]]


def translator(user_id: int, **overrides) -> User:
    fields = dict(
        id=user_id,
        role=UserRole.TRANSLATOR,
        name=f"Translator {user_id}",
        email=f"t{user_id}@example.se",
        mobile=f"+4670000{user_id:04d}",
        city="Stockholm",
        gender=Gender.FEMALE,
        translator_type=TranslatorType.PROFESSIONAL,
        translator_level=TranslatorLevel.CERTIFIED,
        languages=frozenset({ARABIC}),
    )
    fields.update(overrides)
    return User(**fields)


def seed(store) -> None:
    store.add_language(Language(ARABIC, "Arabiska"))
    store.add_language(Language(PERSIAN, "Persiska"))
    store.add_user(User(
        id=CUSTOMER, role=UserRole.CUSTOMER, name="Kund AB", email="kund@example.se",
        city="Stockholm", consumer_type=ConsumerType.PAID, customer_type="landsting",
    ))
    store.add_user(User(
        id=NGO_CUSTOMER, role=UserRole.CUSTOMER, name="Hjälp Org", email="ngo@example.se",
        city="Uppsala", consumer_type=ConsumerType.NGO,
    ))
    store.add_user(User(id=ADMIN, role=UserRole.ADMIN, name="Admin", email="admin@example.se"))
    store.add_user(translator(TRANSLATOR))
    store.add_user(translator(TRANSLATOR_2, gender=Gender.MALE, city="Göteborg",
                              translator_level=TranslatorLevel.LAYMAN))
    store.add_user(translator(VOLUNTEER, translator_type=TranslatorType.VOLUNTEER))
    store.add_user(translator(SUSPENDED, suspended=True))
    store.add_user(translator(SILENT, suppress_all=True))
    store.add_user(translator(NIGHT_OWL, suppress_nighttime=True))


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def store():
    store = InMemoryStore()
    seed(store)
    return store


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def push():
    return RecordingPush()


@pytest.fixture
def settings():
    return Settings(dispatch_timeout_seconds=0.2, dispatch_max_parallel=4)


@pytest.fixture
def service(settings, store, clock, mailer, sms, push):
    return get_booking_service(settings, store=store, clock=clock, mailer=mailer, sms=sms, push=push)


@pytest.fixture
def make_job():
    """Build a paid phone booking for CUSTOMER, due in two days unless overridden."""
    def _make(**overrides) -> Job:
        fields = dict(
            id=None,
            customer_id=CUSTOMER,
            from_language_id=ARABIC,
            duration=60,
            due=NOW + timedelta(days=2),
            job_type=JobType.PAID,
            customer_phone_type=True,
            created_at=NOW,
            will_expire_at=NOW + timedelta(hours=16),
        )
        fields.update(overrides)
        return Job(**fields)
    return _make


@pytest.fixture
def add_job(store, make_job):
    """Persist a job (and optionally an active assignment) and return it."""
    async def _add(translator_id: Optional[int] = None, **overrides) -> Job:
        job = await store.save_job(make_job(**overrides))
        if translator_id is not None:
            await store.save_assignment(Assignment(job.id, translator_id, NOW - timedelta(hours=1)))
        return job
    return _add
