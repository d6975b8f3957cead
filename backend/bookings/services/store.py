"""
Booking Store Interface and In-Memory Implementation

The lifecycle engine never touches persistence; BookingService loads and
persists through this interface. Every state change of a use case is
written with a single `commit_transition` call so that a failed
precondition or a lost race leaves nothing behind.

Concurrency:
    `commit_transition` is a conditional write keyed on
    (job_id, expected_status). When two translators race to accept the
    same pending job, exactly one commit succeeds; the other returns
    False and writes nothing.

Implementations:
    - InMemoryStore: dict-backed, serialised by an asyncio.Lock
    - SqlAlchemyStore (bookings.services.sql_store): async SQLAlchemy
"""

import asyncio
import copy
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from bookings.services.domain import (
    Assignment,
    Job,
    JobStatus,
    Language,
    User,
    UserCriteria,
    UserRole,
)
from bookings.services.errors import NotFoundError


@runtime_checkable
class Store(Protocol):
    """Persistence operations consumed by BookingService and the matcher."""

    async def get_job(self, job_id: int) -> Job:
        ...

    async def save_job(self, job: Job) -> Job:
        ...

    async def get_active_assignment(self, job_id: int) -> Optional[Assignment]:
        ...

    async def save_assignment(self, assignment: Assignment) -> Assignment:
        ...

    async def get_user(self, user_id: int) -> User:
        ...

    async def find_users(self, criteria: UserCriteria) -> List[User]:
        ...

    async def get_language(self, language_id: int) -> Optional[Language]:
        ...

    async def is_double_booked(self, translator_id: int, job: Job) -> bool:
        ...

    async def commit_transition(
        self,
        job: Job,
        assignments: Iterable[Assignment],
        expected_status: JobStatus,
    ) -> bool:
        ...

    async def find_jobs(self, statuses: Iterable[JobStatus]) -> List[Job]:
        ...

    async def find_expired_jobs(self, now: datetime) -> List[Job]:
        ...

    async def find_jobs_due_between(self, start: datetime, end: datetime) -> List[Job]:
        ...

    async def find_jobs_for_user(self, user_id: int, role: UserRole, statuses: Iterable[JobStatus]) -> List[Job]:
        ...


def overlaps(a: Job, b: Job) -> bool:
    """Two bookings overlap when their [due, due+duration) windows intersect."""
    return a.due < b.ends_at and b.due < a.ends_at


class InMemoryStore:
    """
    Dict-backed store for tests and local runs.

    Objects are copied on the way in and out so that callers can never
    mutate stored state without going through a save/commit call.
    """

    def __init__(self):
        self.jobs: Dict[int, Job] = {}
        self.assignments: Dict[int, Assignment] = {}
        self.users: Dict[int, User] = {}
        self.languages: Dict[int, Language] = {}
        self._job_seq = 0
        self._assignment_seq = 0
        self._lock = asyncio.Lock()

    # ==================== Seeding ====================

    def add_user(self, user: User) -> User:
        self.users[user.id] = copy.deepcopy(user)
        return user

    def add_language(self, language: Language) -> Language:
        self.languages[language.id] = copy.deepcopy(language)
        return language

    # ==================== Jobs ====================

    async def get_job(self, job_id: int) -> Job:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return copy.deepcopy(job)

    async def save_job(self, job: Job) -> Job:
        async with self._lock:
            return self._put_job(job)

    def _put_job(self, job: Job) -> Job:
        if job.id is None:
            self._job_seq += 1
            job.id = self._job_seq
        self.jobs[job.id] = copy.deepcopy(job)
        return job

    async def find_jobs(self, statuses: Iterable[JobStatus]) -> List[Job]:
        wanted = set(statuses)
        return [copy.deepcopy(j) for j in self.jobs.values() if j.status in wanted]

    async def find_expired_jobs(self, now: datetime) -> List[Job]:
        return [
            copy.deepcopy(j) for j in self.jobs.values()
            if j.status == JobStatus.PENDING
            and j.will_expire_at is not None
            and j.will_expire_at <= now
        ]

    async def find_jobs_due_between(self, start: datetime, end: datetime) -> List[Job]:
        return [
            copy.deepcopy(j) for j in self.jobs.values()
            if j.status == JobStatus.ASSIGNED and start <= j.due < end
        ]

    async def find_jobs_for_user(self, user_id: int, role: UserRole, statuses: Iterable[JobStatus]) -> List[Job]:
        """
        A customer's own jobs, or the jobs a translator holds or held
        (assignments they cancelled do not count). Ordered by due.
        """
        wanted = set(statuses)
        if role == UserRole.TRANSLATOR:
            job_ids = {
                a.job_id for a in self.assignments.values()
                if a.translator_id == user_id and a.cancel_at is None
            }
        else:
            job_ids = {j.id for j in self.jobs.values() if j.customer_id == user_id}
        found = [self.jobs[i] for i in job_ids if i in self.jobs and self.jobs[i].status in wanted]
        return [copy.deepcopy(j) for j in sorted(found, key=lambda j: (j.due, j.id))]

    # ==================== Assignments ====================

    async def get_active_assignment(self, job_id: int) -> Optional[Assignment]:
        for assignment in self.assignments.values():
            if assignment.job_id == job_id and assignment.is_active:
                return copy.deepcopy(assignment)
        return None

    async def save_assignment(self, assignment: Assignment) -> Assignment:
        async with self._lock:
            return self._put_assignment(assignment)

    def _put_assignment(self, assignment: Assignment) -> Assignment:
        if assignment.id is None:
            self._assignment_seq += 1
            assignment.id = self._assignment_seq
        self.assignments[assignment.id] = copy.deepcopy(assignment)
        return assignment

    def assignments_for(self, job_id: int) -> List[Assignment]:
        return [copy.deepcopy(a) for a in self.assignments.values() if a.job_id == job_id]

    async def is_double_booked(self, translator_id: int, job: Job) -> bool:
        for assignment in self.assignments.values():
            if assignment.translator_id != translator_id or not assignment.is_active:
                continue
            if assignment.job_id == job.id:
                continue
            other = self.jobs.get(assignment.job_id)
            if other is not None and not other.is_terminal and overlaps(job, other):
                return True
        return False

    async def commit_transition(
        self,
        job: Job,
        assignments: Iterable[Assignment],
        expected_status: JobStatus,
    ) -> bool:
        assignments = list(assignments)
        async with self._lock:
            current = self.jobs.get(job.id)
            if current is None:
                raise NotFoundError("Job", job.id)
            if current.status != expected_status:
                return False

            # At most one active assignment may remain after this commit
            closing = {a.id for a in assignments if a.id is not None and not a.is_active}
            opening = [a for a in assignments if a.id is None and a.is_active]
            still_active = [
                a for a in self.assignments.values()
                if a.job_id == job.id and a.is_active and a.id not in closing
            ]
            if len(still_active) + len(opening) > 1:
                return False

            self._put_job(job)
            for assignment in assignments:
                self._put_assignment(assignment)
            return True

    # ==================== Users & Languages ====================

    async def get_user(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return copy.deepcopy(user)

    async def find_users(self, criteria: UserCriteria) -> List[User]:
        found = []
        for user in self.users.values():
            if criteria.role is not None and user.role != criteria.role:
                continue
            if user.suspended and not criteria.include_suspended:
                continue
            if user.id in criteria.exclude_ids:
                continue
            found.append(copy.deepcopy(user))
        return found

    async def get_language(self, language_id: int) -> Optional[Language]:
        language = self.languages.get(language_id)
        return copy.deepcopy(language) if language else None
