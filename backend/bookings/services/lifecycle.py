"""
Booking Lifecycle Engine - Status State Machine

The engine is the only place where a job's status, its timestamps and its
assignments change. It is stateless and never performs I/O: every method
takes the current job (and its active assignment), validates the
requested transition against TRANSITIONS and returns a TransitionOutcome
holding new copies of the touched records plus the domain events that
must be published once the outcome has been committed.

Architecture:
    BookingService ─► LifecycleEngine ─► TransitionOutcome
          │                               (job, assignments, events)
          ├─► Store.commit_transition(...)   all-or-nothing write
          └─► subscribers.handle(job, events) notifications after commit

Events:
    - StatusChanged: a status edge was taken
    - NotificationRequested: one template kind over one channel to the
      given recipient ids (context carries the audience)
    - MatchRequested: run the matching-and-notify flow for the job

Rejected transitions raise ConflictError; missing admin input raises
ValidationError. Nothing is mutated in either case.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from bookings.services.domain import Assignment, Job, JobStatus
from bookings.services.errors import ConflictError, ValidationError
from bookings.services.templates import Audience, Channel, TemplateKind
from bookings.services.timeutils import (
    Clock,
    format_due,
    format_session_time,
    hours_until,
    parse_session_time,
    session_interval,
    will_expire_at,
)

logger = logging.getLogger(__name__)


class Trigger(str, Enum):
    ACCEPT = "accept"
    REASSIGN = "reassign"
    EXPIRE = "expire"
    REOPEN = "reopen"
    START = "start"
    CANCEL = "cancel"
    TRANSLATOR_CANCEL = "translator_cancel"
    ADMIN_EDIT = "admin_edit"
    END = "end"
    COMPLETE = "complete"


S = JobStatus
T = Trigger

# (from, to) -> triggers allowed to take that edge. Anything missing is illegal.
TRANSITIONS: Dict[Tuple[JobStatus, JobStatus], FrozenSet[Trigger]] = {
    (S.PENDING, S.ASSIGNED): frozenset({T.ACCEPT, T.REASSIGN}),
    (S.PENDING, S.TIMEDOUT): frozenset({T.EXPIRE}),
    (S.PENDING, S.WITHDRAWBEFORE24): frozenset({T.CANCEL}),
    (S.PENDING, S.WITHDRAWAFTER24): frozenset({T.CANCEL}),
    (S.TIMEDOUT, S.PENDING): frozenset({T.REOPEN}),
    (S.TIMEDOUT, S.ASSIGNED): frozenset({T.ACCEPT, T.REASSIGN}),
    (S.ASSIGNED, S.ASSIGNED): frozenset({T.REASSIGN}),
    (S.ASSIGNED, S.STARTED): frozenset({T.START}),
    (S.ASSIGNED, S.PENDING): frozenset({T.TRANSLATOR_CANCEL}),
    (S.ASSIGNED, S.WITHDRAWBEFORE24): frozenset({T.CANCEL, T.ADMIN_EDIT}),
    (S.ASSIGNED, S.WITHDRAWAFTER24): frozenset({T.CANCEL, T.ADMIN_EDIT}),
    (S.ASSIGNED, S.TIMEDOUT): frozenset({T.ADMIN_EDIT}),
    (S.STARTED, S.COMPLETED): frozenset({T.END, T.COMPLETE}),
    (S.WITHDRAWAFTER24, S.TIMEDOUT): frozenset({T.ADMIN_EDIT}),
}

# Admin edits into these statuses must carry a comment
COMMENT_REQUIRED = frozenset({JobStatus.TIMEDOUT, JobStatus.COMPLETED})


def can_transition(current: JobStatus, target: JobStatus, trigger: Trigger) -> bool:
    return trigger in TRANSITIONS.get((current, target), frozenset())


def ensure_transition(current: JobStatus, target: JobStatus, trigger: Trigger) -> None:
    if not can_transition(current, target, trigger):
        raise ConflictError(
            f"Cannot move booking from {current.value} to {target.value} ({trigger.value})"
        )


# ==================== Domain events ====================

@dataclass(frozen=True)
class StatusChanged:
    job_id: int
    old_status: JobStatus
    new_status: JobStatus
    trigger: Trigger


@dataclass(frozen=True)
class NotificationRequested:
    kind: TemplateKind
    channel: Channel
    recipient_ids: Tuple[int, ...]
    context: Dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class MatchRequested:
    job_id: int
    exclude_ids: FrozenSet[int] = frozenset()
    channel: Channel = Channel.PUSH


DomainEvent = Union[StatusChanged, NotificationRequested, MatchRequested]


def _email(kind: TemplateKind, recipient_id: int, audience: Audience, **context) -> NotificationRequested:
    return NotificationRequested(kind, Channel.EMAIL, (recipient_id,), {"audience": audience, **context})


def _assignment_key(assignment: Assignment):
    if assignment.id is not None:
        return assignment.id
    return ("new", assignment.translator_id, assignment.assigned_at)


@dataclass
class TransitionOutcome:
    """
    Result of one engine call.

    Attributes:
        job: Updated copy of the job
        assignments: Assignment copies to write (new ones have id None)
        events: Domain events to publish after the commit
        active: The job's active assignment after the transition
        changed: False for idempotent no-ops; nothing should be written
    """
    job: Job
    assignments: List[Assignment] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)
    active: Optional[Assignment] = None
    changed: bool = True

    def then(self, other: "TransitionOutcome") -> "TransitionOutcome":
        """Chain a follow-up outcome computed from this one's job and active assignment."""
        if not other.changed:
            return self
        keys = {_assignment_key(a) for a in other.assignments}
        kept = [a for a in self.assignments if _assignment_key(a) not in keys]
        return TransitionOutcome(
            job=other.job,
            assignments=kept + other.assignments,
            events=self.events + other.events,
            active=other.active,
            changed=self.changed or other.changed,
        )

    @property
    def notifications(self) -> List[NotificationRequested]:
        return [e for e in self.events if isinstance(e, NotificationRequested)]


class LifecycleEngine:
    """
    Applies status transitions to jobs.

    Attributes:
        clock: Injected time source; every timestamp comes from it
        translator_cancel_cutoff_hours: Translators cannot cancel closer to due
        customer_withdraw_hours: Boundary between withdrawbefore24/withdrawafter24
        support_phone: Number quoted in the translator-cancel refusal
    """

    def __init__(
        self,
        clock: Clock,
        translator_cancel_cutoff_hours: int = 24,
        customer_withdraw_hours: int = 24,
        support_phone: str = "+46 73 75 86 865",
    ):
        self.clock = clock
        self.translator_cancel_cutoff_hours = translator_cancel_cutoff_hours
        self.customer_withdraw_hours = customer_withdraw_hours
        self.support_phone = support_phone

    def _move(
        self,
        job: Job,
        target: JobStatus,
        trigger: Trigger,
    ) -> Tuple[Job, StatusChanged]:
        ensure_transition(job.status, target, trigger)
        logger.debug(f"Job {job.id}: {job.status.value} -> {target.value} ({trigger.value})")
        moved = replace(job, status=target)
        return moved, StatusChanged(job.id, job.status, target, trigger)

    # ==================== Creation & expiry ====================

    def open(self, job: Job) -> TransitionOutcome:
        """Stamp a freshly validated job as pending and request matching."""
        now = self.clock.now()
        opened = replace(
            job,
            status=JobStatus.PENDING,
            created_at=now,
            will_expire_at=will_expire_at(job.due, now),
        )
        return TransitionOutcome(
            opened,
            events=[
                _email(TemplateKind.JOB_CREATED, job.customer_id, Audience.CUSTOMER),
                MatchRequested(job.id),
            ],
        )

    def expire(self, job: Job) -> TransitionOutcome:
        expired, changed = self._move(job, JobStatus.TIMEDOUT, Trigger.EXPIRE)
        return TransitionOutcome(expired, events=[changed])

    def reopen(self, job: Job) -> TransitionOutcome:
        """
        Give a timed-out job a new matching window.

        created_at restarts now, reminder flags are cleared and the
        candidates are notified again.
        """
        now = self.clock.now()
        reopened, changed = self._move(job, JobStatus.PENDING, Trigger.REOPEN)
        reopened = replace(
            reopened,
            created_at=now,
            will_expire_at=will_expire_at(job.due, now),
            email_sent=False,
            cust_16_hour_email=False,
            cust_48_hour_email=False,
        )
        return TransitionOutcome(
            reopened,
            events=[
                changed,
                _email(TemplateKind.JOB_REOPENED, job.customer_id, Audience.CUSTOMER),
                MatchRequested(job.id),
            ],
        )

    # ==================== Assignment ====================

    def accept(self, job: Job, active: Optional[Assignment], translator_id: int) -> TransitionOutcome:
        """
        Assign a translator who accepted the booking.

        The double-booking check needs the store and is done by the caller
        before this is invoked.
        """
        if active is not None:
            raise ConflictError("Jobbet kunde inte accepteras.")
        accepted, changed = self._move(job, JobStatus.ASSIGNED, Trigger.ACCEPT)
        assignment = Assignment(job_id=job.id, translator_id=translator_id, assigned_at=self.clock.now())

        events: List[DomainEvent] = [
            changed,
            _email(TemplateKind.JOB_ACCEPTED, job.customer_id, Audience.CUSTOMER),
        ]
        if job.status == JobStatus.PENDING:
            events.append(_email(TemplateKind.JOB_ACCEPTED, translator_id, Audience.TRANSLATOR))
        return TransitionOutcome(accepted, [assignment], events, active=assignment)

    def reassign(self, job: Job, active: Optional[Assignment], translator_id: int) -> TransitionOutcome:
        """Replace (or set) the translator of a job on an admin's request."""
        if active is not None and active.translator_id == translator_id:
            raise ConflictError(f"Translator #{translator_id} is already assigned to booking #{job.id}")
        reassigned, changed = self._move(job, JobStatus.ASSIGNED, Trigger.REASSIGN)
        now = self.clock.now()

        touched: List[Assignment] = []
        events: List[DomainEvent] = [
            changed,
            _email(TemplateKind.JOB_CHANGED_TRANSLATOR, job.customer_id, Audience.CUSTOMER),
        ]
        if active is not None:
            touched.append(replace(active, cancel_at=now))
            events.append(_email(TemplateKind.JOB_CHANGED_TRANSLATOR, active.translator_id, Audience.OLD_TRANSLATOR))

        assignment = Assignment(job_id=job.id, translator_id=translator_id, assigned_at=now)
        touched.append(assignment)
        events.append(_email(TemplateKind.JOB_CHANGED_TRANSLATOR, translator_id, Audience.NEW_TRANSLATOR))
        return TransitionOutcome(reassigned, touched, events, active=assignment)

    def start(self, job: Job, active: Optional[Assignment]) -> TransitionOutcome:
        started, changed = self._move(job, JobStatus.STARTED, Trigger.START)
        return TransitionOutcome(started, events=[changed], active=active)

    # ==================== Cancellation ====================

    def _withdraw(
        self,
        job: Job,
        active: Optional[Assignment],
        target: JobStatus,
        trigger: Trigger,
    ) -> TransitionOutcome:
        now = self.clock.now()
        withdrawn, changed = self._move(job, target, trigger)
        if target != JobStatus.TIMEDOUT:
            withdrawn = replace(withdrawn, withdraw_at=now)

        touched: List[Assignment] = []
        events: List[DomainEvent] = [
            changed,
            _email(TemplateKind.JOB_CANCELLED_BY_CUSTOMER, job.customer_id, Audience.CUSTOMER),
        ]
        if active is not None:
            touched.append(replace(active, cancel_at=now))
            events.append(
                _email(TemplateKind.JOB_CANCELLED_BY_CUSTOMER, active.translator_id, Audience.TRANSLATOR)
            )
        return TransitionOutcome(withdrawn, touched, events, active=None)

    def cancel_by_customer(self, job: Job, active: Optional[Assignment]) -> TransitionOutcome:
        """Customer withdrawal; the 24-hour rule picks the withdraw status."""
        if hours_until(self.clock.now(), job.due) >= self.customer_withdraw_hours:
            target = JobStatus.WITHDRAWBEFORE24
        else:
            target = JobStatus.WITHDRAWAFTER24
        return self._withdraw(job, active, target, Trigger.CANCEL)

    def cancel_by_translator(
        self,
        job: Job,
        active: Optional[Assignment],
        translator_id: int,
    ) -> TransitionOutcome:
        """
        Translator hands a booking back.

        Only the assigned translator may do this, and only while more than
        `translator_cancel_cutoff_hours` remain. The job goes back to
        pending with a fresh matching window, excluding that translator.
        """
        if active is None or active.translator_id != translator_id:
            raise ConflictError(f"Translator #{translator_id} is not assigned to booking #{job.id}")
        ensure_transition(job.status, JobStatus.PENDING, Trigger.TRANSLATOR_CANCEL)

        now = self.clock.now()
        if hours_until(now, job.due) <= self.translator_cancel_cutoff_hours:
            raise ConflictError(
                f"Du kan inte avboka en bokning som sker inom {self.translator_cancel_cutoff_hours} timmar. "
                f"Ring {self.support_phone} för att avboka."
            )

        released, changed = self._move(job, JobStatus.PENDING, Trigger.TRANSLATOR_CANCEL)
        released = replace(released, created_at=now, will_expire_at=will_expire_at(job.due, now))
        return TransitionOutcome(
            released,
            [replace(active, cancel_at=now)],
            [
                changed,
                _email(TemplateKind.JOB_CANCELLED_BY_TRANSLATOR, job.customer_id, Audience.CUSTOMER),
                MatchRequested(job.id, frozenset({translator_id})),
            ],
            active=None,
        )

    # ==================== Completion ====================

    def _finish(
        self,
        job: Job,
        active: Optional[Assignment],
        session_time: str,
        completed_by: int,
        trigger: Trigger,
    ) -> TransitionOutcome:
        now = self.clock.now()
        completed, changed = self._move(job, JobStatus.COMPLETED, trigger)
        completed = replace(completed, session_time=session_time, end_at=now)

        spoken = format_session_time(session_time)
        touched: List[Assignment] = []
        events: List[DomainEvent] = [
            changed,
            _email(TemplateKind.SESSION_ENDED, job.customer_id, Audience.CUSTOMER,
                   session_time=spoken, for_text="faktura"),
        ]
        if active is not None:
            touched.append(replace(active, completed_at=now, completed_by=completed_by))
            events.append(
                _email(TemplateKind.SESSION_ENDED, active.translator_id, Audience.TRANSLATOR,
                       session_time=spoken, for_text="lön")
            )
        return TransitionOutcome(completed, touched, events, active=None)

    def end(self, job: Job, active: Optional[Assignment], ended_by: int) -> TransitionOutcome:
        """
        End a running session; elapsed time since due becomes session_time.

        Ending an already completed job is a successful no-op.
        """
        if job.status == JobStatus.COMPLETED:
            return TransitionOutcome(job, active=active, changed=False)
        session_time = session_interval(job.due, self.clock.now())
        return self._finish(job, active, session_time, ended_by, Trigger.END)

    def complete(
        self,
        job: Job,
        active: Optional[Assignment],
        admin_id: int,
        admin_comments: str,
        session_time: Optional[str] = None,
    ) -> TransitionOutcome:
        if not (admin_comments or "").strip():
            raise ValidationError("Admin comment is required to complete a booking", "admin_comments")
        ensure_transition(job.status, JobStatus.COMPLETED, Trigger.COMPLETE)
        if session_time:
            recorded = parse_session_time(session_time)
        else:
            recorded = job.session_time or session_interval(job.due, self.clock.now())
        job = replace(job, admin_comments=admin_comments)
        return self._finish(job, active, recorded, admin_id, Trigger.COMPLETE)

    # ==================== Admin edits ====================

    def admin_set_status(
        self,
        job: Job,
        active: Optional[Assignment],
        target: JobStatus,
        admin_comments: str = "",
    ) -> TransitionOutcome:
        """
        Admin status rewrite for the edges reserved to admins.

        assigned → withdraw*/timedout behaves like a cancellation;
        withdrawafter24 → timedout only records the status.
        """
        ensure_transition(job.status, target, Trigger.ADMIN_EDIT)
        if target in COMMENT_REQUIRED and not (admin_comments or "").strip():
            raise ValidationError(f"Admin comment is required for status {target.value}", "admin_comments")

        job = replace(job, admin_comments=admin_comments or job.admin_comments)
        if job.status == JobStatus.ASSIGNED:
            return self._withdraw(job, active, target, Trigger.ADMIN_EDIT)

        moved, changed = self._move(job, target, Trigger.ADMIN_EDIT)
        return TransitionOutcome(moved, events=[changed], active=active)

    def reschedule(self, job: Job, active: Optional[Assignment], due: datetime) -> TransitionOutcome:
        """
        Move the due time. Customer and assigned translator are told about it
        only while the new due time is still ahead.
        """
        if job.is_terminal:
            raise ConflictError(f"Cannot reschedule booking #{job.id} in status {job.status.value}")
        if due == job.due:
            return TransitionOutcome(job, active=active, changed=False)

        moved = replace(job, due=due)
        if job.status == JobStatus.PENDING and job.created_at is not None:
            moved.will_expire_at = will_expire_at(due, job.created_at)

        events: List[DomainEvent] = []
        if due > self.clock.now():
            old_time = format_due(job.due)
            recipients = [(job.customer_id, Audience.CUSTOMER)]
            if active is not None:
                recipients.append((active.translator_id, Audience.TRANSLATOR))
            events = [_email(TemplateKind.JOB_CHANGED_DATE, rid, aud, old_time=old_time) for rid, aud in recipients]
        return TransitionOutcome(moved, events=events, active=active)

    def change_language(self, job: Job, active: Optional[Assignment], language_id: int) -> TransitionOutcome:
        if job.is_terminal:
            raise ConflictError(f"Cannot change language of booking #{job.id} in status {job.status.value}")
        if language_id == job.from_language_id:
            return TransitionOutcome(job, active=active, changed=False)

        moved = replace(job, from_language_id=language_id)
        events: List[DomainEvent] = []
        if job.due > self.clock.now():
            recipients = [(job.customer_id, Audience.CUSTOMER)]
            if active is not None:
                recipients.append((active.translator_id, Audience.TRANSLATOR))
            events = [
                _email(TemplateKind.JOB_CHANGED_LANGUAGE, rid, aud, old_language_id=job.from_language_id)
                for rid, aud in recipients
            ]
        return TransitionOutcome(moved, events=events, active=active)
