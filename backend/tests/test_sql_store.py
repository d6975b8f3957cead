"""
Tests for the SQLAlchemy store on an in-memory aiosqlite database.

Run with: cd backend && pytest tests/test_sql_store.py -v
"""
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import bookings.models  # noqa: F401
from bookings.database import Base
from bookings.services.booking import ALREADY_BOOKED, JobChanges
from bookings.services.domain import (
    Assignment,
    CertificationLevel,
    Gender,
    JobStatus,
    TranslatorType,
    UserCriteria,
    UserRole,
)
from bookings.services.errors import NotFoundError
from bookings.services.factory import get_booking_service
from bookings.services.sql_store import SqlAlchemyStore
from bookings.services.store import InMemoryStore

from conftest import ADMIN, ARABIC, CUSTOMER, NOW, SUSPENDED, TRANSLATOR, TRANSLATOR_2, seed, translator


@pytest_asyncio.fixture
async def sql_store():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SqlAlchemyStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))

    # Same fixture data as the in-memory store
    reference = InMemoryStore()
    seed(reference)
    for language in reference.languages.values():
        await store.add_language(language)
    for user in reference.users.values():
        await store.add_user(user)

    yield store
    await engine.dispose()


class TestMapping:
    """Rows round-trip into the domain dataclasses."""

    @pytest.mark.asyncio
    async def test_user_mapping(self, sql_store):
        """User rows map languages, blacklist and flags back to the dataclass."""
        await sql_store.add_user(translator(20, blocked_by=frozenset({CUSTOMER}), suppress_emergency=True))
        user = await sql_store.get_user(20)
        assert user.role == UserRole.TRANSLATOR
        assert user.translator_type == TranslatorType.PROFESSIONAL
        assert user.languages == frozenset({ARABIC})
        assert user.blocked_by == frozenset({CUSTOMER})
        assert user.suppress_emergency is True
        assert user.gender == Gender.FEMALE

    @pytest.mark.asyncio
    async def test_job_mapping(self, sql_store, make_job):
        """A saved job reads back unchanged."""
        saved = await sql_store.save_job(make_job(
            gender=Gender.MALE, certification_level=CertificationLevel.NORMAL_LAW, reference="PO-1",
        ))
        assert saved.id is not None
        loaded = await sql_store.get_job(saved.id)
        assert loaded == saved

    @pytest.mark.asyncio
    async def test_missing_rows(self, sql_store):
        """Missing jobs and users raise; missing languages are None."""
        with pytest.raises(NotFoundError):
            await sql_store.get_job(404)
        with pytest.raises(NotFoundError):
            await sql_store.get_user(404)
        assert await sql_store.get_language(404) is None
        assert (await sql_store.get_language(ARABIC)).name == "Arabiska"

    @pytest.mark.asyncio
    async def test_find_users_skips_suspended(self, sql_store):
        """Suspended users are left out unless asked for."""
        users = await sql_store.find_users(UserCriteria(role=UserRole.TRANSLATOR))
        ids = [u.id for u in users]
        assert SUSPENDED not in ids
        assert ids == sorted(ids)
        everyone = await sql_store.find_users(UserCriteria(include_suspended=True, exclude_ids=frozenset({CUSTOMER})))
        assert SUSPENDED in [u.id for u in everyone]
        assert CUSTOMER not in [u.id for u in everyone]


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_expired_jobs(self, sql_store, make_job):
        """Only pending jobs past their deadline are expired."""
        overdue = await sql_store.save_job(make_job(will_expire_at=NOW - timedelta(minutes=1)))
        await sql_store.save_job(make_job(will_expire_at=NOW + timedelta(hours=1)))
        await sql_store.save_job(make_job(will_expire_at=NOW - timedelta(hours=1), status=JobStatus.ASSIGNED))
        assert [j.id for j in await sql_store.find_expired_jobs(NOW)] == [overdue.id]

    @pytest.mark.asyncio
    async def test_find_jobs_due_between(self, sql_store, make_job):
        """Reminders look at assigned jobs inside the window."""
        soon = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED, due=NOW + timedelta(minutes=30)))
        await sql_store.save_job(make_job(status=JobStatus.ASSIGNED, due=NOW + timedelta(hours=3)))
        await sql_store.save_job(make_job(due=NOW + timedelta(minutes=20)))
        found = await sql_store.find_jobs_due_between(NOW, NOW + timedelta(hours=1))
        assert [j.id for j in found] == [soon.id]

    @pytest.mark.asyncio
    async def test_double_booking_uses_active_assignments(self, sql_store, make_job):
        """Overlap is checked against the translator's active assignments."""
        booked = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED))
        await sql_store.save_assignment(Assignment(booked.id, TRANSLATOR, NOW))
        clash = make_job(due=booked.due + timedelta(minutes=15))
        later = make_job(due=booked.due + timedelta(hours=2))
        assert await sql_store.is_double_booked(TRANSLATOR, clash) is True
        assert await sql_store.is_double_booked(TRANSLATOR, later) is False
        assert await sql_store.is_double_booked(TRANSLATOR_2, clash) is False

    @pytest.mark.asyncio
    async def test_find_jobs_for_user(self, sql_store, make_job):
        """Customers see their own jobs, translators the ones they did not hand back."""
        later = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED, due=NOW + timedelta(days=3)))
        sooner = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED, due=NOW + timedelta(days=1)))
        await sql_store.save_job(make_job(status=JobStatus.COMPLETED))
        await sql_store.save_assignment(Assignment(later.id, TRANSLATOR, NOW))
        await sql_store.save_assignment(Assignment(sooner.id, TRANSLATOR, NOW, cancel_at=NOW))
        current = (JobStatus.PENDING, JobStatus.ASSIGNED, JobStatus.STARTED)

        mine = await sql_store.find_jobs_for_user(CUSTOMER, UserRole.CUSTOMER, current)
        held = await sql_store.find_jobs_for_user(TRANSLATOR, UserRole.TRANSLATOR, current)

        assert [j.id for j in mine] == [sooner.id, later.id]
        assert [j.id for j in held] == [later.id]
        assert await sql_store.find_jobs_for_user(TRANSLATOR_2, UserRole.TRANSLATOR, current) == []


class TestCommitTransition:
    @pytest.mark.asyncio
    async def test_conditional_write(self, sql_store, make_job):
        """The second commit against pending writes nothing."""
        job = await sql_store.save_job(make_job())
        first = Assignment(job.id, TRANSLATOR, NOW)
        second = Assignment(job.id, TRANSLATOR_2, NOW)
        assigned = make_job(id=job.id, status=JobStatus.ASSIGNED)

        assert await sql_store.commit_transition(assigned, [first], JobStatus.PENDING) is True
        assert await sql_store.commit_transition(assigned, [second], JobStatus.PENDING) is False
        active = await sql_store.get_active_assignment(job.id)
        assert active.translator_id == TRANSLATOR
        assert len(await sql_store.assignments_for(job.id)) == 1

    @pytest.mark.asyncio
    async def test_second_active_assignment_rejected(self, sql_store, make_job):
        """A job never gets two active assignments."""
        job = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED))
        await sql_store.save_assignment(Assignment(job.id, TRANSLATOR, NOW))
        extra = Assignment(job.id, TRANSLATOR_2, NOW)
        assert await sql_store.commit_transition(job, [extra], JobStatus.ASSIGNED) is False
        assert len(await sql_store.assignments_for(job.id)) == 1

    @pytest.mark.asyncio
    async def test_closing_and_opening_in_one_commit(self, sql_store, make_job):
        """Reassignment closes and opens assignments together."""
        job = await sql_store.save_job(make_job(status=JobStatus.ASSIGNED))
        old = await sql_store.save_assignment(Assignment(job.id, TRANSLATOR, NOW))
        closed = Assignment(job.id, TRANSLATOR, NOW, id=old.id, cancel_at=NOW)
        new = Assignment(job.id, TRANSLATOR_2, NOW)
        assert await sql_store.commit_transition(job, [closed, new], JobStatus.ASSIGNED) is True
        assert new.id is not None
        assert (await sql_store.get_active_assignment(job.id)).translator_id == TRANSLATOR_2

    @pytest.mark.asyncio
    async def test_unknown_job(self, sql_store, make_job):
        """Committing a missing job raises not found."""
        with pytest.raises(NotFoundError):
            await sql_store.commit_transition(make_job(id=404), [], JobStatus.PENDING)


class TestServiceOnSql:
    """The booking service runs unchanged on the SQL store."""

    @pytest.mark.asyncio
    async def test_second_accept_is_refused(self, sql_store, settings, clock, mailer, sms, push, make_job):
        """A late accept on the database store is a conflict."""
        service = get_booking_service(settings, store=sql_store, clock=clock, mailer=mailer, sms=sms, push=push)
        job = await sql_store.save_job(make_job())
        assert (await service.accept(job.id, TRANSLATOR)).ok
        late = await service.accept(job.id, TRANSLATOR_2)
        assert late.error == "conflict"
        assert len(await sql_store.assignments_for(job.id)) == 1
        assert (await sql_store.get_job(job.id)).status == JobStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_translator_cancel_round_trip(self, sql_store, settings, clock, mailer, sms, push, make_job):
        """A translator hand-back is stored and not offered back to them."""
        service = get_booking_service(settings, store=sql_store, clock=clock, mailer=mailer, sms=sms, push=push)
        job = await sql_store.save_job(make_job(due=NOW + timedelta(hours=36)))
        assert (await service.accept(job.id, TRANSLATOR)).ok
        result = await service.cancel(job.id, TRANSLATOR)
        assert result.ok
        history = await sql_store.assignments_for(job.id)
        assert [a.cancel_at for a in history] == [NOW]
        assert "t10@example.se" not in push.tags()

    @pytest.mark.asyncio
    async def test_reschedule_onto_busy_translator(self, sql_store, settings, clock, mailer, sms, push, make_job):
        """Rescheduling checks the translator's other bookings in the database."""
        service = get_booking_service(settings, store=sql_store, clock=clock, mailer=mailer, sms=sms, push=push)
        first = await sql_store.save_job(make_job(due=NOW + timedelta(days=2)))
        second = await sql_store.save_job(make_job(due=NOW + timedelta(days=4)))
        assert (await service.accept(first.id, TRANSLATOR)).ok
        assert (await service.accept(second.id, TRANSLATOR)).ok
        result = await service.update(second.id, JobChanges(due=first.due), ADMIN)
        assert result.message == ALREADY_BOOKED
        assert (await sql_store.get_job(second.id)).due == NOW + timedelta(days=4)
