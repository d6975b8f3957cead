"""
Booking Service - Use-Case Orchestration

Every public method is one unit of work:

    load job/users/active assignment from the store
      → validate preconditions (fail fast, nothing written)
      → ask the LifecycleEngine for a TransitionOutcome
      → Store.commit_transition(...)  conditional, all-or-nothing
      → forward the outcome's events to subscribers (notifications)
      → BookingResult

Precondition failures (ValidationError / ConflictError / NotFoundError)
come back as `BookingResult(status="fail", ...)`. Notification failures
after a successful commit are reported in `result.notifications` and
never undo the transition.

Key Functions:
    - create(): validate a booking request and open the job
    - accept() / reassign(): attach a translator (race-safe)
    - cancel(): customer withdrawal or translator hand-back
    - start() / end() / complete(): run and close a session
    - reopen() / expire(): timed-out handling
    - update(): admin edit (translator, due, language, status, comments)
    - potential_jobs(): reverse matching for a translator
    - user_jobs() / user_jobs_history(): a customer's or translator's bookings
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from bookings.services.dispatcher import DispatchResult
from bookings.services.domain import (
    JOB_TYPE_BY_CONSUMER,
    Assignment,
    CertificationLevel,
    Gender,
    Job,
    JobStatus,
    JobType,
    User,
    UserRole,
)
from bookings.services.errors import (
    BookingError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from bookings.services.lifecycle import DomainEvent, LifecycleEngine, TransitionOutcome
from bookings.services.matcher import TranslatorMatcher
from bookings.services.notifier import EventSubscriber, JobEventNotifier
from bookings.services.store import Store
from bookings.services.templates import Channel, TemplateKind, job_for_labels, job_to_data
from bookings.services.timeutils import Clock, format_due, parse_booking_due, to_local

logger = logging.getLogger(__name__)
admin_logger = logging.getLogger("bookings.admin")

MISSING_FIELD = "Du måste fylla in alla fält"
CHOOSE_TYPE = "Du måste göra ett val här"
ALREADY_BOOKED = "Du har redan en bokning den tiden! Bokningen är inte accepterad."

SUCCESS = "success"
FAIL = "fail"

CURRENT_STATUSES = (JobStatus.PENDING, JobStatus.ASSIGNED, JobStatus.STARTED)
HISTORY_STATUSES = (
    JobStatus.COMPLETED,
    JobStatus.WITHDRAWBEFORE24,
    JobStatus.WITHDRAWAFTER24,
    JobStatus.TIMEDOUT,
)
HISTORY_PAGE_SIZE = 15


@dataclass
class BookingResult:
    """
    Outcome of a booking use case.

    Attributes:
        status: "success" or "fail"
        message: Human readable reason for failures
        job: The job after the use case (None when it could not be loaded)
        field_name: Offending request field for validation failures
        error: Failure category: "validation", "conflict" or "not_found"
        data: Extra response payload (create details, job lists)
        notifications: Aggregated dispatch result of the published events
    """
    status: str
    message: str = ""
    job: Optional[Job] = None
    field_name: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    notifications: DispatchResult = field(default_factory=DispatchResult)

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS

    @classmethod
    def success(cls, job: Optional[Job] = None, **kwargs) -> "BookingResult":
        return cls(status=SUCCESS, job=job, **kwargs)

    @classmethod
    def from_error(cls, exc: BookingError) -> "BookingResult":
        if isinstance(exc, ValidationError):
            return cls(status=FAIL, message=exc.message, field_name=exc.field_name, error="validation")
        if isinstance(exc, NotFoundError):
            return cls(status=FAIL, message=exc.message, error="not_found")
        return cls(status=FAIL, message=exc.message, error="conflict")


@dataclass
class JobChanges:
    """Admin edit request; None means "leave unchanged"."""
    translator_id: Optional[int] = None
    due: Optional[datetime] = None
    from_language_id: Optional[int] = None
    status: Optional[JobStatus] = None
    admin_comments: Optional[str] = None
    session_time: Optional[str] = None
    reference: Optional[str] = None


@dataclass
class UserJobs:
    """Current bookings of a customer or translator, split by urgency."""
    user: User
    emergency: List[Job]
    normal: List[Job]


@dataclass
class JobHistoryPage:
    user: User
    jobs: List[Job]
    page: int
    num_pages: int
    total: int


def _flag(value) -> bool:
    """Form flags arrive as "yes"/"no", booleans or presence."""
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "1", "on")
    return bool(value)


def _gender_from(job_for: Sequence[str]) -> Optional[Gender]:
    if "male" in job_for:
        return Gender.MALE
    if "female" in job_for:
        return Gender.FEMALE
    return None


def _certification_from(job_for: Sequence[str]) -> Optional[CertificationLevel]:
    normal = "normal" in job_for
    if normal and "certified" in job_for:
        return CertificationLevel.BOTH
    if normal and "certified_in_law" in job_for:
        return CertificationLevel.NORMAL_LAW
    if normal and "certified_in_health" in job_for:
        return CertificationLevel.NORMAL_HEALTH
    if normal:
        return CertificationLevel.NORMAL
    if "certified" in job_for:
        return CertificationLevel.CERTIFIED
    if "certified_in_law" in job_for:
        return CertificationLevel.LAW
    if "certified_in_health" in job_for:
        return CertificationLevel.HEALTH
    return None


def _require_role(user: User, *roles: UserRole) -> None:
    if user.role not in roles:
        allowed = "/".join(r.value for r in roles)
        raise ValidationError(f"User #{user.id} is a {user.role.value}, expected {allowed}", "user_id")


class BookingService:
    """
    Orchestrates booking use cases on top of the engine and the store.

    Attributes:
        store: Persistence collaborator
        engine: Stateless status state machine
        matcher: Translator eligibility filter
        notifier: Default event subscriber (also used for direct pushes)
        subscribers: Everyone receiving committed domain events
        immediate_minutes: Offset of due for immediate bookings
        timezone: Local zone that incoming aware datetimes are converted to
    """

    def __init__(
        self,
        store: Store,
        engine: LifecycleEngine,
        matcher: TranslatorMatcher,
        notifier: JobEventNotifier,
        clock: Clock,
        immediate_minutes: int = 5,
        timezone: str = "Europe/Stockholm",
        subscribers: Optional[List[EventSubscriber]] = None,
    ):
        self.store = store
        self.engine = engine
        self.matcher = matcher
        self.notifier = notifier
        self.clock = clock
        self.immediate_minutes = immediate_minutes
        self.timezone = timezone
        self.subscribers: List[EventSubscriber] = subscribers if subscribers is not None else [notifier]

    # ==================== Plumbing ====================

    async def _publish(self, job: Job, events: Sequence[DomainEvent]) -> DispatchResult:
        result = DispatchResult()
        if not events:
            return result
        for subscriber in self.subscribers:
            try:
                result = result.merge(await subscriber.handle(job, events))
            except Exception:
                logger.exception(f"Subscriber {type(subscriber).__name__} failed for job {job.id}")
        error = result.error()
        if error is not None:
            logger.warning(f"Job {job.id}: {error}")
        return result

    async def _commit(
        self,
        outcome: TransitionOutcome,
        expected_status: JobStatus,
        conflict_message: str,
    ) -> BookingResult:
        if outcome.changed:
            committed = await self.store.commit_transition(outcome.job, outcome.assignments, expected_status)
            if not committed:
                raise ConflictError(conflict_message)
        notifications = await self._publish(outcome.job, outcome.events)
        return BookingResult.success(outcome.job, notifications=notifications)

    async def _load(self, job_id: int):
        job = await self.store.get_job(job_id)
        active = await self.store.get_active_assignment(job_id)
        return job, active

    async def _taken_message(self, job: Job) -> str:
        language = await self.notifier.language_name(job.from_language_id)
        return f"Denna {language}tolkning {job.duration}min {format_due(job.due)} har redan tagits av annan tolk."

    # ==================== Create ====================

    async def create(self, customer_id: int, payload: Dict[str, Any]) -> BookingResult:
        """
        Validate a booking request and open it as a pending job.

        Args:
            customer_id: Id of the booking customer
            payload: Booking form fields (see BookingCreate)

        Returns:
            BookingResult; on success `data` carries id, type, job_for,
            customer_town and customer_type
        """
        try:
            customer = await self.store.get_user(customer_id)
            job = self._build_job(customer, payload)
            outcome = self.engine.open(job)
            saved = await self.store.save_job(outcome.job)
        except BookingError as e:
            return BookingResult.from_error(e)

        logger.info(f"Customer #{customer.id} created booking #{saved.id}")
        notifications = await self._publish(saved, outcome.events)
        data = {
            "id": saved.id,
            "type": "immediate" if saved.immediate else "regular",
            "job_for": job_for_labels(saved),
            "customer_town": customer.city,
            "customer_type": customer.customer_type,
        }
        return BookingResult.success(saved, data=data, notifications=notifications)

    def _build_job(self, customer: User, payload: Dict[str, Any]) -> Job:
        if customer.role != UserRole.CUSTOMER:
            raise ValidationError("Translator cannot create booking")

        immediate = _flag(payload.get("immediate"))
        try:
            from_language_id = int(payload.get("from_language_id") or 0)
        except (TypeError, ValueError):
            from_language_id = 0
        if from_language_id < 1:
            raise ValidationError(MISSING_FIELD, "from_language_id")

        phone = _flag(payload.get("customer_phone_type"))
        physical = _flag(payload.get("customer_physical_type"))
        if not immediate:
            if not payload.get("due_date"):
                raise ValidationError(MISSING_FIELD, "due_date")
            if not payload.get("due_time"):
                raise ValidationError(MISSING_FIELD, "due_time")
            if not phone and not physical:
                raise ValidationError(CHOOSE_TYPE, "customer_phone_type")

        try:
            duration = int(payload.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0
        if duration < 1:
            raise ValidationError(MISSING_FIELD, "duration")

        now = self.clock.now()
        if immediate:
            due = now + timedelta(minutes=self.immediate_minutes)
            phone = True
        else:
            due = parse_booking_due(payload["due_date"], payload["due_time"])
            if due <= now:
                raise ValidationError("Can't create booking in past", "due_date")

        job_for = payload.get("job_for") or []
        if isinstance(job_for, str):
            job_for = [part.strip() for part in job_for.split(",")]
        job_type = JOB_TYPE_BY_CONSUMER[customer.consumer_type] if customer.consumer_type else JobType.UNKNOWN
        return Job(
            id=None,
            customer_id=customer.id,
            from_language_id=from_language_id,
            duration=duration,
            due=due,
            immediate=immediate,
            gender=_gender_from(job_for),
            certification_level=_certification_from(job_for),
            job_type=job_type,
            customer_phone_type=phone,
            customer_physical_type=physical,
            user_email=payload.get("user_email") or None,
            reference=payload.get("reference") or "",
            address=payload.get("address") or None,
            instructions=payload.get("instructions") or None,
            town=payload.get("town") or None,
            by_admin=_flag(payload.get("by_admin")),
        )

    # ==================== Assignment ====================

    async def accept(self, job_id: int, translator_id: int) -> BookingResult:
        try:
            translator = await self.store.get_user(translator_id)
            _require_role(translator, UserRole.TRANSLATOR)
            job, active = await self._load(job_id)
            if await self.store.is_double_booked(translator.id, job):
                raise ConflictError(ALREADY_BOOKED)
            if active is not None:
                raise ConflictError(await self._taken_message(job))
            outcome = self.engine.accept(job, active, translator.id)
            result = await self._commit(outcome, job.status, await self._taken_message(job))
        except BookingError as e:
            return BookingResult.from_error(e)
        logger.info(f"Translator #{translator.id} accepted booking #{job_id}")
        return result

    async def reassign(self, job_id: int, translator_id: int, admin_id: int) -> BookingResult:
        return await self.update(job_id, JobChanges(translator_id=translator_id), admin_id)

    # ==================== Cancellation ====================

    async def cancel(self, job_id: int, actor_id: int) -> BookingResult:
        """
        Cancel on behalf of the actor.

        Customers (and admins acting for them) withdraw the booking;
        the assigned translator hands it back for re-matching.
        """
        try:
            actor = await self.store.get_user(actor_id)
            job, active = await self._load(job_id)
            match actor.role:
                case UserRole.CUSTOMER | UserRole.ADMIN:
                    if actor.role == UserRole.CUSTOMER and job.customer_id != actor.id:
                        raise ConflictError(f"Booking #{job.id} belongs to another customer")
                    outcome = self.engine.cancel_by_customer(job, active)
                case UserRole.TRANSLATOR:
                    outcome = self.engine.cancel_by_translator(job, active, actor.id)
            result = await self._commit(outcome, job.status, f"Booking #{job.id} changed while cancelling")
        except BookingError as e:
            return BookingResult.from_error(e)
        logger.info(f"{actor.role.value} #{actor.id} cancelled booking #{job_id}: {result.job.status.value}")
        return result

    # ==================== Session ====================

    async def start(self, job_id: int, actor_id: int) -> BookingResult:
        try:
            actor = await self.store.get_user(actor_id)
            _require_role(actor, UserRole.CUSTOMER, UserRole.ADMIN)
            job, active = await self._load(job_id)
            outcome = self.engine.start(job, active)
            return await self._commit(outcome, job.status, f"Booking #{job.id} changed while starting")
        except BookingError as e:
            return BookingResult.from_error(e)

    async def end(self, job_id: int, actor_id: int) -> BookingResult:
        """End a started session. Repeated calls on a completed job succeed without effect."""
        try:
            actor = await self.store.get_user(actor_id)
            job, active = await self._load(job_id)
            outcome = self.engine.end(job, active, actor.id)
            return await self._commit(outcome, job.status, f"Booking #{job.id} changed while ending")
        except BookingError as e:
            return BookingResult.from_error(e)

    async def complete(
        self,
        job_id: int,
        admin_id: int,
        admin_comments: str,
        session_time: Optional[str] = None,
    ) -> BookingResult:
        changes = JobChanges(
            status=JobStatus.COMPLETED,
            admin_comments=admin_comments,
            session_time=session_time,
        )
        return await self.update(job_id, changes, admin_id)

    # ==================== Timed-out handling ====================

    async def reopen(self, job_id: int, admin_id: int) -> BookingResult:
        return await self.update(job_id, JobChanges(status=JobStatus.PENDING), admin_id)

    async def expire(self, job_id: int) -> BookingResult:
        try:
            job = await self.store.get_job(job_id)
            outcome = self.engine.expire(job)
            return await self._commit(outcome, job.status, f"Booking #{job.id} is no longer pending")
        except BookingError as e:
            return BookingResult.from_error(e)

    async def send_expired_notification(self, job_id: int) -> BookingResult:
        """Tell the customer that nobody accepted their booking."""
        try:
            job = await self.store.get_job(job_id)
            customer = await self.store.get_user(job.customer_id)
        except BookingError as e:
            return BookingResult.from_error(e)
        notifications = await self.notifier.notify_user(job, customer, TemplateKind.JOB_EXPIRED)
        return BookingResult.success(job, notifications=notifications)

    async def send_session_reminder(self, job_id: int) -> BookingResult:
        try:
            job, active = await self._load(job_id)
            if job.status != JobStatus.ASSIGNED or active is None:
                raise ConflictError(f"Booking #{job.id} has no assigned translator")
            translator = await self.store.get_user(active.translator_id)
        except BookingError as e:
            return BookingResult.from_error(e)
        notifications = await self.notifier.notify_user(job, translator, TemplateKind.SESSION_REMINDER)
        return BookingResult.success(job, notifications=notifications)

    # ==================== Admin edit ====================

    async def update(self, job_id: int, changes: JobChanges, admin_id: int) -> BookingResult:
        """
        Apply an admin edit as a single transition.

        Translator, due, status and language changes are applied in that
        order on the same working copy and committed together; each of
        them contributes its own notifications.
        """
        try:
            admin = await self.store.get_user(admin_id)
            _require_role(admin, UserRole.ADMIN)
            job, active = await self._load(job_id)
            original_status = job.status
            due = to_local(changes.due, self.timezone) if changes.due is not None else job.due

            working = replace(job)
            if changes.reference is not None:
                working.reference = changes.reference
            if changes.admin_comments is not None:
                working.admin_comments = changes.admin_comments
            outcome = TransitionOutcome(working, active=active, changed=working != job)

            log_fields: List[str] = []
            if changes.translator_id is not None and (active is None or active.translator_id != changes.translator_id):
                translator = await self.store.get_user(changes.translator_id)
                _require_role(translator, UserRole.TRANSLATOR)
                if await self.store.is_double_booked(translator.id, replace(job, due=due)):
                    raise ConflictError(ALREADY_BOOKED)
                outcome = outcome.then(self.engine.reassign(outcome.job, outcome.active, translator.id))
                log_fields.append(f"translator -> #{translator.id}")

            if due != outcome.job.due:
                if outcome.active is not None and await self.store.is_double_booked(
                    outcome.active.translator_id, replace(outcome.job, due=due)
                ):
                    raise ConflictError(ALREADY_BOOKED)
                log_fields.append(f"due {format_due(outcome.job.due)} -> {format_due(due)}")
                outcome = outcome.then(self.engine.reschedule(outcome.job, outcome.active, due))

            if changes.status is not None and changes.status != outcome.job.status:
                log_fields.append(f"status {outcome.job.status.value} -> {changes.status.value}")
                outcome = outcome.then(self._status_edit(outcome, changes, admin))

            if changes.from_language_id is not None and changes.from_language_id != outcome.job.from_language_id:
                log_fields.append(f"language #{outcome.job.from_language_id} -> #{changes.from_language_id}")
                outcome = outcome.then(
                    self.engine.change_language(outcome.job, outcome.active, changes.from_language_id)
                )

            result = await self._commit(outcome, original_status, f"Booking #{job.id} was changed by someone else")
        except BookingError as e:
            return BookingResult.from_error(e)

        if log_fields or outcome.changed:
            admin_logger.info(
                f"USER #{admin.id} ({admin.name}) has updated booking #{job_id}: "
                f"{', '.join(log_fields) or 'comments/reference'}"
            )
        return result

    def _status_edit(self, outcome: TransitionOutcome, changes: JobChanges, admin: User) -> TransitionOutcome:
        job, active = outcome.job, outcome.active
        comments = changes.admin_comments if changes.admin_comments is not None else job.admin_comments
        match changes.status:
            case JobStatus.PENDING if job.status == JobStatus.TIMEDOUT:
                return self.engine.reopen(job)
            case JobStatus.STARTED:
                return self.engine.start(job, active)
            case JobStatus.COMPLETED:
                return self.engine.complete(job, active, admin.id, comments, changes.session_time)
            case _:
                return self.engine.admin_set_status(job, active, changes.status, comments)

    # ==================== Matching ====================

    async def resend_notifications(self, job_id: int) -> BookingResult:
        return await self._resend(job_id, Channel.PUSH)

    async def resend_sms_notifications(self, job_id: int) -> BookingResult:
        return await self._resend(job_id, Channel.SMS)

    async def _resend(self, job_id: int, channel: Channel) -> BookingResult:
        try:
            job = await self.store.get_job(job_id)
            if job.status != JobStatus.PENDING:
                raise ConflictError(f"Booking #{job.id} is {job.status.value}, not open for offers")
        except BookingError as e:
            return BookingResult.from_error(e)
        notifications = await self.notifier.notify_candidates_for_job(job, channel=channel)
        logger.info(f"Resent {channel.value} offers for booking #{job.id}: {notifications.sent} sent")
        return BookingResult.success(job, notifications=notifications)

    async def potential_jobs(self, translator_id: int) -> List[Job]:
        """
        Pending jobs the translator could accept.

        Raises:
            NotFoundError: Unknown translator
            ValidationError: The user is not a translator
        """
        translator = await self.store.get_user(translator_id)
        _require_role(translator, UserRole.TRANSLATOR)
        return await self.matcher.find_jobs_for_translator(translator)

    # ==================== User job lists ====================

    async def _list_owner(self, user_id: int) -> User:
        user = await self.store.get_user(user_id)
        _require_role(user, UserRole.CUSTOMER, UserRole.TRANSLATOR)
        return user

    async def user_jobs(self, user_id: int) -> UserJobs:
        """
        Pending, assigned and started bookings of a customer (their own)
        or a translator (the ones they hold), soonest first.

        Raises:
            NotFoundError: Unknown user
            ValidationError: The user is neither customer nor translator
        """
        user = await self._list_owner(user_id)
        jobs = await self.store.find_jobs_for_user(user.id, user.role, CURRENT_STATUSES)
        return UserJobs(
            user=user,
            emergency=[job for job in jobs if job.immediate],
            normal=[job for job in jobs if not job.immediate],
        )

    async def user_jobs_history(self, user_id: int, page: int = 1) -> JobHistoryPage:
        """Closed bookings, most recent due first, HISTORY_PAGE_SIZE per page."""
        user = await self._list_owner(user_id)
        jobs = await self.store.find_jobs_for_user(user.id, user.role, HISTORY_STATUSES)
        jobs.reverse()
        page = max(page, 1)
        start = (page - 1) * HISTORY_PAGE_SIZE
        return JobHistoryPage(
            user=user,
            jobs=jobs[start:start + HISTORY_PAGE_SIZE],
            page=page,
            num_pages=math.ceil(len(jobs) / HISTORY_PAGE_SIZE),
            total=len(jobs),
        )

    async def get_job(self, job_id: int) -> Job:
        return await self.store.get_job(job_id)

    async def job_data(self, job: Job) -> Dict[str, Any]:
        """Flat payload for API responses, with the customer's town and type."""
        try:
            customer = await self.store.get_user(job.customer_id)
        except NotFoundError:
            customer = None
        return job_to_data(job, customer)

    async def active_assignment(self, job_id: int) -> Optional[Assignment]:
        return await self.store.get_active_assignment(job_id)
