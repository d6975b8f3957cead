"""
SQLAlchemy Store - Async ORM implementation of the Store interface

Maps the domain dataclasses to the `jobs`, `translator_job_rel`, `users`,
`user_languages`, `users_blacklist` and `languages` tables. Each call
opens its own session from the injected `async_sessionmaker`.

Atomic transitions:
    commit_transition() issues
        UPDATE jobs SET ... WHERE id = :id AND status = :expected
    and only writes the assignment rows when exactly one job row matched
    and no second active assignment would result. Otherwise the session
    is rolled back and False is returned.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookings.models import Job as JobRow
from bookings.models import Language as LanguageRow
from bookings.models import TranslatorJobRel
from bookings.models import User as UserRow
from bookings.models import UserLanguage, UsersBlacklist
from bookings.services.domain import (
    TERMINAL_STATUSES,
    Assignment,
    CertificationLevel,
    ConsumerType,
    Gender,
    Job,
    JobStatus,
    JobType,
    Language,
    TranslatorLevel,
    TranslatorType,
    User,
    UserCriteria,
    UserRole,
    parse_enum,
)
from bookings.services.errors import NotFoundError
from bookings.services.store import overlaps

logger = logging.getLogger(__name__)


def _value(member) -> Optional[str]:
    return member.value if member is not None else None


def _enum(enum_cls, raw, field_name: str):
    return parse_enum(enum_cls, raw, field_name) if raw is not None else None


# ==================== Row ↔ domain mapping ====================

def job_values(job: Job) -> Dict[str, Any]:
    return {
        "user_id": job.customer_id,
        "from_language_id": job.from_language_id,
        "immediate": job.immediate,
        "due": job.due,
        "duration": job.duration,
        "status": job.status.value,
        "gender": _value(job.gender),
        "certified": _value(job.certification_level),
        "job_type": job.job_type.value,
        "customer_phone_type": job.customer_phone_type,
        "customer_physical_type": job.customer_physical_type,
        "admin_comments": job.admin_comments,
        "session_time": job.session_time,
        "created_at": job.created_at,
        "will_expire_at": job.will_expire_at,
        "end_at": job.end_at,
        "withdraw_at": job.withdraw_at,
        "user_email": job.user_email,
        "reference": job.reference,
        "address": job.address,
        "instructions": job.instructions,
        "town": job.town,
        "by_admin": job.by_admin,
        "email_sent": job.email_sent,
        "cust_16_hour_email": job.cust_16_hour_email,
        "cust_48_hour_email": job.cust_48_hour_email,
    }


def job_from_row(row: JobRow) -> Job:
    return Job(
        id=row.id,
        customer_id=row.user_id,
        from_language_id=row.from_language_id,
        duration=row.duration,
        due=row.due,
        immediate=row.immediate,
        status=parse_enum(JobStatus, row.status, "status"),
        gender=_enum(Gender, row.gender, "gender"),
        certification_level=_enum(CertificationLevel, row.certified, "certified"),
        job_type=parse_enum(JobType, row.job_type, "job_type"),
        customer_phone_type=row.customer_phone_type,
        customer_physical_type=row.customer_physical_type,
        admin_comments=row.admin_comments or "",
        session_time=row.session_time,
        created_at=row.created_at,
        will_expire_at=row.will_expire_at,
        end_at=row.end_at,
        withdraw_at=row.withdraw_at,
        user_email=row.user_email,
        reference=row.reference or "",
        address=row.address,
        instructions=row.instructions,
        town=row.town,
        by_admin=row.by_admin,
        email_sent=row.email_sent,
        cust_16_hour_email=row.cust_16_hour_email,
        cust_48_hour_email=row.cust_48_hour_email,
    )


def assignment_values(assignment: Assignment) -> Dict[str, Any]:
    return {
        "job_id": assignment.job_id,
        "user_id": assignment.translator_id,
        "created_at": assignment.assigned_at,
        "completed_at": assignment.completed_at,
        "cancel_at": assignment.cancel_at,
        "completed_by": assignment.completed_by,
    }


def assignment_from_row(row: TranslatorJobRel) -> Assignment:
    return Assignment(
        id=row.id,
        job_id=row.job_id,
        translator_id=row.user_id,
        assigned_at=row.created_at,
        completed_at=row.completed_at,
        cancel_at=row.cancel_at,
        completed_by=row.completed_by,
    )


def user_from_row(row: UserRow) -> User:
    return User(
        id=row.id,
        role=parse_enum(UserRole, row.user_type, "user_type"),
        name=row.name,
        email=row.email,
        mobile=row.mobile,
        city=row.city,
        gender=_enum(Gender, row.gender, "gender"),
        suspended=row.suspended,
        consumer_type=_enum(ConsumerType, row.consumer_type, "consumer_type"),
        customer_type=row.customer_type,
        translator_type=_enum(TranslatorType, row.translator_type, "translator_type"),
        translator_level=_enum(TranslatorLevel, row.translator_level, "translator_level"),
        languages=frozenset(lang.lang_id for lang in row.languages),
        blocked_by=frozenset(block.user_id for block in row.blocked_by),
        suppress_emergency=row.not_get_emergency,
        suppress_nighttime=row.not_get_nighttime,
        suppress_all=row.not_get_notification,
    )


def _active(query):
    return query.where(TranslatorJobRel.completed_at.is_(None), TranslatorJobRel.cancel_at.is_(None))


class SqlAlchemyStore:
    """
    Store backed by an async SQLAlchemy session factory.

    Args:
        session_factory: `async_sessionmaker` producing AsyncSession objects
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # ==================== Seeding ====================

    async def add_language(self, language: Language) -> Language:
        async with self.session_factory() as session:
            session.add(LanguageRow(id=language.id, language=language.name, active=language.active))
            await session.commit()
        return language

    async def add_user(self, user: User) -> User:
        async with self.session_factory() as session:
            row = UserRow(
                id=user.id,
                user_type=user.role.value,
                name=user.name,
                email=user.email,
                mobile=user.mobile,
                city=user.city,
                gender=_value(user.gender),
                suspended=user.suspended,
                consumer_type=_value(user.consumer_type),
                customer_type=user.customer_type,
                translator_type=_value(user.translator_type),
                translator_level=_value(user.translator_level),
                not_get_emergency=user.suppress_emergency,
                not_get_nighttime=user.suppress_nighttime,
                not_get_notification=user.suppress_all,
            )
            row.languages = [UserLanguage(lang_id=lang_id) for lang_id in sorted(user.languages)]
            row.blocked_by = [UsersBlacklist(user_id=customer_id) for customer_id in sorted(user.blocked_by)]
            session.add(row)
            await session.commit()
        return user

    # ==================== Jobs ====================

    async def get_job(self, job_id: int) -> Job:
        async with self.session_factory() as session:
            row = await session.get(JobRow, job_id)
            if row is None:
                raise NotFoundError("Job", job_id)
            return job_from_row(row)

    async def save_job(self, job: Job) -> Job:
        async with self.session_factory() as session:
            if job.id is None:
                row = JobRow(**job_values(job))
                session.add(row)
                await session.flush()
                job.id = row.id
            else:
                result = await session.execute(
                    update(JobRow).where(JobRow.id == job.id).values(**job_values(job))
                )
                if result.rowcount == 0:
                    raise NotFoundError("Job", job.id)
            await session.commit()
        return job

    async def find_jobs(self, statuses: Iterable[JobStatus]) -> List[Job]:
        wanted = [s.value for s in statuses]
        return await self._select_jobs(select(JobRow).where(JobRow.status.in_(wanted)))

    async def find_expired_jobs(self, now: datetime) -> List[Job]:
        query = select(JobRow).where(
            JobRow.status == JobStatus.PENDING.value,
            JobRow.will_expire_at.is_not(None),
            JobRow.will_expire_at <= now,
        )
        return await self._select_jobs(query)

    async def find_jobs_due_between(self, start: datetime, end: datetime) -> List[Job]:
        query = select(JobRow).where(
            JobRow.status == JobStatus.ASSIGNED.value,
            JobRow.due >= start,
            JobRow.due < end,
        )
        return await self._select_jobs(query)

    async def find_jobs_for_user(self, user_id: int, role: UserRole, statuses: Iterable[JobStatus]) -> List[Job]:
        query = select(JobRow).where(JobRow.status.in_([s.value for s in statuses]))
        if role == UserRole.TRANSLATOR:
            held = select(TranslatorJobRel.job_id).where(
                TranslatorJobRel.user_id == user_id,
                TranslatorJobRel.cancel_at.is_(None),
            )
            query = query.where(JobRow.id.in_(held))
        else:
            query = query.where(JobRow.user_id == user_id)
        async with self.session_factory() as session:
            rows = (await session.execute(query.order_by(JobRow.due, JobRow.id))).scalars().all()
            return [job_from_row(row) for row in rows]

    async def _select_jobs(self, query) -> List[Job]:
        async with self.session_factory() as session:
            rows = (await session.execute(query.order_by(JobRow.id))).scalars().all()
            return [job_from_row(row) for row in rows]

    # ==================== Assignments ====================

    async def get_active_assignment(self, job_id: int) -> Optional[Assignment]:
        async with self.session_factory() as session:
            query = _active(select(TranslatorJobRel).where(TranslatorJobRel.job_id == job_id))
            row = (await session.execute(query)).scalars().first()
            return assignment_from_row(row) if row else None

    async def save_assignment(self, assignment: Assignment) -> Assignment:
        async with self.session_factory() as session:
            await self._write_assignment(session, assignment)
            await session.commit()
        return assignment

    async def assignments_for(self, job_id: int) -> List[Assignment]:
        async with self.session_factory() as session:
            query = select(TranslatorJobRel).where(TranslatorJobRel.job_id == job_id).order_by(TranslatorJobRel.id)
            return [assignment_from_row(row) for row in (await session.execute(query)).scalars().all()]

    async def _write_assignment(self, session: AsyncSession, assignment: Assignment) -> None:
        if assignment.id is None:
            row = TranslatorJobRel(**assignment_values(assignment))
            session.add(row)
            await session.flush()
            assignment.id = row.id
        else:
            await session.execute(
                update(TranslatorJobRel)
                .where(TranslatorJobRel.id == assignment.id)
                .values(**assignment_values(assignment))
            )

    async def is_double_booked(self, translator_id: int, job: Job) -> bool:
        async with self.session_factory() as session:
            query = _active(
                select(JobRow)
                .join(TranslatorJobRel, TranslatorJobRel.job_id == JobRow.id)
                .where(TranslatorJobRel.user_id == translator_id)
            ).where(JobRow.status.not_in([s.value for s in TERMINAL_STATUSES]))
            if job.id is not None:
                query = query.where(JobRow.id != job.id)
            rows = (await session.execute(query)).scalars().all()
        return any(overlaps(job, job_from_row(row)) for row in rows)

    async def commit_transition(
        self,
        job: Job,
        assignments: Iterable[Assignment],
        expected_status: JobStatus,
    ) -> bool:
        assignments = list(assignments)
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    update(JobRow)
                    .where(JobRow.id == job.id, JobRow.status == expected_status.value)
                    .values(**job_values(job))
                )
                if result.rowcount != 1:
                    await session.rollback()
                    if await session.get(JobRow, job.id) is None:
                        raise NotFoundError("Job", job.id)
                    logger.info(f"Job {job.id} is no longer {expected_status.value}, transition rejected")
                    return False

                closing = [a.id for a in assignments if a.id is not None and not a.is_active]
                opening = sum(1 for a in assignments if a.id is None and a.is_active)
                count_query = _active(
                    select(func.count()).select_from(TranslatorJobRel).where(TranslatorJobRel.job_id == job.id)
                )
                if closing:
                    count_query = count_query.where(TranslatorJobRel.id.not_in(closing))
                still_active = (await session.execute(count_query)).scalar_one()
                if still_active + opening > 1:
                    await session.rollback()
                    logger.warning(f"Job {job.id} would end up with {still_active + opening} active assignments")
                    return False

                for assignment in assignments:
                    await self._write_assignment(session, assignment)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return True

    # ==================== Users & Languages ====================

    async def get_user(self, user_id: int) -> User:
        async with self.session_factory() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                raise NotFoundError("User", user_id)
            return user_from_row(row)

    async def find_users(self, criteria: UserCriteria) -> List[User]:
        query = select(UserRow)
        if criteria.role is not None:
            query = query.where(UserRow.user_type == criteria.role.value)
        if not criteria.include_suspended:
            query = query.where(UserRow.suspended.is_(False))
        if criteria.exclude_ids:
            query = query.where(UserRow.id.not_in(list(criteria.exclude_ids)))
        async with self.session_factory() as session:
            rows = (await session.execute(query.order_by(UserRow.id))).scalars().all()
            return [user_from_row(row) for row in rows]

    async def get_language(self, language_id: int) -> Optional[Language]:
        async with self.session_factory() as session:
            row = await session.get(LanguageRow, language_id)
            if row is None:
                return None
            return Language(id=row.id, name=row.language, active=row.active)
