"""
Tests for translator matching.

Run with: cd backend && pytest tests/test_matcher.py -v
"""
from datetime import datetime, timedelta

import pytest

from bookings.services.domain import (
    Assignment,
    CertificationLevel,
    Gender,
    JobStatus,
    JobType,
    TranslatorLevel,
)
from bookings.services.matcher import TranslatorMatcher
from bookings.services.timeutils import FixedClock

from conftest import (
    CUSTOMER,
    NIGHT_OWL,
    NOW,
    PERSIAN,
    SILENT,
    TRANSLATOR,
    TRANSLATOR_2,
    VOLUNTEER,
    translator,
)


@pytest.fixture
def matcher(store, clock):
    return TranslatorMatcher(store, clock)


class TestEligibility:
    """Every eligibility rule must hold for a candidate."""

    @pytest.mark.asyncio
    async def test_candidates_keep_store_order(self, matcher, make_job):
        """Candidates come back in store order with no ranking."""
        candidates = await matcher.find_candidates(make_job(id=1))
        assert candidates == [TRANSLATOR, TRANSLATOR_2, SILENT, NIGHT_OWL]

    @pytest.mark.asyncio
    async def test_language_must_match(self, matcher, make_job):
        """Translators must speak the booking language."""
        assert await matcher.find_candidates(make_job(id=1, from_language_id=PERSIAN)) == []

    @pytest.mark.asyncio
    async def test_unpaid_jobs_go_to_volunteers(self, matcher, make_job):
        """Unpaid jobs are for volunteers only."""
        assert await matcher.find_candidates(make_job(id=1, job_type=JobType.UNPAID)) == [VOLUNTEER]

    @pytest.mark.asyncio
    async def test_unknown_job_type_has_no_pool(self, matcher, make_job):
        """An unknown job type matches nobody."""
        assert await matcher.find_candidates(make_job(id=1, job_type=JobType.UNKNOWN)) == []

    @pytest.mark.asyncio
    async def test_gender_filter(self, matcher, make_job):
        """A gender requirement filters translators."""
        assert await matcher.find_candidates(make_job(id=1, gender=Gender.MALE)) == [TRANSLATOR_2]

    @pytest.mark.asyncio
    async def test_certification_filter(self, matcher, make_job):
        """Certification requirements map to translator levels."""
        certified = await matcher.find_candidates(make_job(id=1, certification_level=CertificationLevel.CERTIFIED))
        normal = await matcher.find_candidates(make_job(id=1, certification_level=CertificationLevel.NORMAL))
        assert TRANSLATOR_2 not in certified
        assert normal == [TRANSLATOR_2]

    @pytest.mark.asyncio
    async def test_blacklisted_translator_is_skipped(self, store, matcher, make_job):
        """Translators blocked by the customer are skipped."""
        store.add_user(translator(20, blocked_by=frozenset({CUSTOMER})))
        assert 20 not in await matcher.find_candidates(make_job(id=1))

    @pytest.mark.asyncio
    async def test_physical_only_job_requires_same_town(self, matcher, make_job):
        """On-site only jobs need a translator in the booking town."""
        job = make_job(id=1, customer_phone_type=False, customer_physical_type=True, town="göteborg")
        assert await matcher.find_candidates(job) == [TRANSLATOR_2]

    @pytest.mark.asyncio
    async def test_physical_only_job_falls_back_to_customer_city(self, matcher, make_job):
        """Without a booking town the customer's city is used."""
        job = make_job(id=1, customer_phone_type=False, customer_physical_type=True)
        assert TRANSLATOR_2 not in await matcher.find_candidates(job)
        assert TRANSLATOR in await matcher.find_candidates(job)

    @pytest.mark.asyncio
    async def test_town_check_override(self, store, clock, make_job):
        """The override setting disables the town check."""
        matcher = TranslatorMatcher(store, clock, town_check_override=True)
        job = make_job(id=1, customer_phone_type=False, customer_physical_type=True, town="Malmö")
        assert TRANSLATOR in await matcher.find_candidates(job)

    @pytest.mark.asyncio
    async def test_phone_and_physical_skips_town_check(self, matcher, make_job):
        """Jobs that allow phone skip the town check."""
        job = make_job(id=1, customer_phone_type=True, customer_physical_type=True, town="Malmö")
        assert TRANSLATOR in await matcher.find_candidates(job)

    def test_suspended_translator_is_not_eligible(self, matcher, make_job):
        """Suspended translators are never eligible."""
        customer_job = make_job(id=1)
        suspended = translator(30, suspended=True)
        customer = translator(CUSTOMER)
        assert matcher.is_eligible(suspended, customer_job, customer) is False

    def test_level_outside_certification(self, matcher, make_job):
        """Law certified translators do not take health jobs."""
        job = make_job(id=1, certification_level=CertificationLevel.HEALTH)
        law = translator(31, translator_level=TranslatorLevel.CERTIFIED_LAW)
        health = translator(32, translator_level=TranslatorLevel.CERTIFIED_HEALTH)
        customer = translator(CUSTOMER)
        assert matcher.is_eligible(law, job, customer) is False
        assert matcher.is_eligible(health, job, customer) is True


class TestPushRouting:
    def test_suppress_all_disables_push(self, matcher):
        """Translators who opted out get no pushes."""
        assert matcher.is_need_to_send_push(translator(40, suppress_all=True)) is False
        assert matcher.is_need_to_send_push(translator(41)) is True

    def test_delay_only_at_night_for_opted_out(self, store):
        """Night pushes are delayed only for those who opted out."""
        owl = translator(42, suppress_nighttime=True)
        night = TranslatorMatcher(store, FixedClock(datetime(2026, 3, 2, 23, 30)))
        day = TranslatorMatcher(store, FixedClock(datetime(2026, 3, 2, 14, 0)))
        assert night.is_need_to_delay_push(owl) is True
        assert day.is_need_to_delay_push(owl) is False
        assert night.is_need_to_delay_push(translator(43)) is False


class TestReverseMatching:
    @pytest.mark.asyncio
    async def test_jobs_for_translator_only_pending_and_eligible(self, store, matcher, add_job):
        """Reverse matching lists pending jobs the translator qualifies for."""
        open_job = await add_job()
        await add_job(from_language_id=PERSIAN)
        await add_job(status=JobStatus.TIMEDOUT)
        me = await store.get_user(TRANSLATOR)
        jobs = await matcher.find_jobs_for_translator(me)
        assert [j.id for j in jobs] == [open_job.id]

    @pytest.mark.asyncio
    async def test_jobs_for_translator_skips_overlapping(self, store, matcher, add_job):
        """Jobs clashing with the translator's bookings are left out."""
        due = NOW + timedelta(days=3)
        await add_job(translator_id=TRANSLATOR, status=JobStatus.ASSIGNED, due=due)
        clash = await add_job(due=due + timedelta(minutes=30))
        free = await add_job(due=due + timedelta(hours=2))
        me = await store.get_user(TRANSLATOR)
        ids = [j.id for j in await matcher.find_jobs_for_translator(me)]
        assert clash.id not in ids
        assert free.id in ids

    @pytest.mark.asyncio
    async def test_store_double_booking_ignores_closed_assignments(self, store, add_job):
        """Cancelled assignments do not block a translator."""
        due = NOW + timedelta(days=3)
        booked = await add_job(status=JobStatus.ASSIGNED, due=due)
        await store.save_assignment(Assignment(booked.id, TRANSLATOR, NOW, cancel_at=NOW))
        other = await add_job(due=due)
        assert await store.is_double_booked(TRANSLATOR, other) is False
        assert await store.is_double_booked(TRANSLATOR_2, other) is False
