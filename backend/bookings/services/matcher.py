"""
Translator Matching Service - Eligibility Filtering for Bookings

This module decides which translators may be offered a booking. It is
a pure filter: there is no scoring or ranking, and candidates keep the
order in which the store returns them.

Eligibility (all must hold):
    - role is translator and the account is not suspended
    - speaks the job's source language
    - translator level is within the levels implied by the requested
      certification (unset certification accepts any level)
    - translator type matches the job type (paid↔professional,
      rws↔rwstranslator, unpaid↔volunteer)
    - not blacklisted by the job's customer
    - physical-only jobs require the translator to live in the job's town
      unless the town check is overridden
    - gender matches when the job requests one

Push routing:
    - is_need_to_send_push(): False when the translator opted out of all
      notifications
    - is_need_to_delay_push(): True during night hours for translators who
      opted out of night-time pushes
"""

import logging
from typing import List, Optional

from bookings.services.domain import (
    TRANSLATOR_TYPE_BY_JOB_TYPE,
    Job,
    JobStatus,
    User,
    UserCriteria,
    UserRole,
    levels_for,
)
from bookings.services.store import Store
from bookings.services.timeutils import Clock, is_night_time

logger = logging.getLogger(__name__)


def _same_town(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().casefold() == b.strip().casefold()


class TranslatorMatcher:
    """
    Produces the ordered candidate set of translators for a job.

    Attributes:
        store: Source of translator and customer records
        clock: Injected clock for the night-time check
        town_check_override: Skip the town requirement for physical jobs
    """

    def __init__(
        self,
        store: Store,
        clock: Clock,
        night_start_hour: int = 22,
        business_start_hour: int = 7,
        town_check_override: bool = False,
    ):
        self.store = store
        self.clock = clock
        self.night_start_hour = night_start_hour
        self.business_start_hour = business_start_hour
        self.town_check_override = town_check_override

    def is_eligible(self, translator: User, job: Job, customer: User) -> bool:
        """Check every eligibility rule for one translator/job pair."""
        if translator.role != UserRole.TRANSLATOR or translator.suspended:
            return False
        if job.from_language_id not in translator.languages:
            return False
        if translator.translator_level not in levels_for(job.certification_level):
            return False

        wanted_type = TRANSLATOR_TYPE_BY_JOB_TYPE[job.job_type]
        if wanted_type is None or translator.translator_type != wanted_type:
            return False

        if customer.id in translator.blocked_by:
            return False

        if job.is_physical_only and not self.town_check_override:
            if not _same_town(translator.city, job.town or customer.city):
                return False

        if job.gender is not None and translator.gender != job.gender:
            return False

        return True

    async def find_candidate_users(self, job: Job) -> List[User]:
        customer = await self.store.get_user(job.customer_id)
        translators = await self.store.find_users(UserCriteria(role=UserRole.TRANSLATOR))
        candidates = [t for t in translators if self.is_eligible(t, job, customer)]
        logger.debug(f"Job {job.id}: {len(candidates)} of {len(translators)} translators eligible")
        return candidates

    async def find_candidates(self, job: Job) -> List[int]:
        """Ordered ids of eligible translators for `job`."""
        return [t.id for t in await self.find_candidate_users(job)]

    async def find_jobs_for_translator(self, translator: User) -> List[Job]:
        """
        Reverse matching: pending jobs the translator is eligible for.

        Jobs overlapping one of the translator's active assignments are
        left out since they could not be accepted anyway.
        """
        jobs = await self.store.find_jobs([JobStatus.PENDING])
        potential = []
        for job in jobs:
            customer = await self.store.get_user(job.customer_id)
            if not self.is_eligible(translator, job, customer):
                continue
            if await self.store.is_double_booked(translator.id, job):
                continue
            potential.append(job)
        return potential

    def is_need_to_send_push(self, translator: User) -> bool:
        return not translator.suppress_all

    def is_need_to_delay_push(self, translator: User) -> bool:
        night = is_night_time(self.clock.now(), self.night_start_hour, self.business_start_hour)
        return night and translator.suppress_nighttime
