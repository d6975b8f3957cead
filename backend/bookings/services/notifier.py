"""
Job Event Notifier - Domain Events to Notifications

Subscriber that BookingService forwards committed domain events to. It
resolves recipient ids into users, fills in display context (language
names, town) and calls the NotificationDispatcher. It also owns the
matching-and-notify flow used on create, reopen, translator cancel and
manual resends.

Matching-and-notify:
    1. TranslatorMatcher.find_candidate_users(job)
    2. Drop excluded ids, emergency opt-outs for immediate jobs and
       translators already booked at that time
    3. SMS: send to every remaining candidate
       Push: drop translators with all notifications off, then split into
       an immediate batch and a delayed batch (night-time opt-out); the
       delayed batch is sent with send_after = next business hour

Failures never propagate out of `handle`: the transition they belong to
has already been committed.
"""

import logging
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Sequence

from bookings.middleware.metrics import record_transition
from bookings.services.dispatcher import DispatchResult, NotificationDispatcher
from bookings.services.domain import Job, User
from bookings.services.errors import NotFoundError
from bookings.services.lifecycle import (
    DomainEvent,
    MatchRequested,
    NotificationRequested,
    StatusChanged,
)
from bookings.services.matcher import TranslatorMatcher
from bookings.services.store import Store
from bookings.services.templates import Channel, TemplateKind
from bookings.services.timeutils import next_business_time

logger = logging.getLogger(__name__)
push_logger = logging.getLogger("bookings.push")


class EventSubscriber(Protocol):
    async def handle(self, job: Job, events: Sequence[DomainEvent]) -> DispatchResult:
        ...


class JobEventNotifier:
    def __init__(
        self,
        store: Store,
        dispatcher: NotificationDispatcher,
        matcher: TranslatorMatcher,
        business_start_hour: int = 7,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.matcher = matcher
        self.business_start_hour = business_start_hour

    async def handle(self, job: Job, events: Sequence[DomainEvent]) -> DispatchResult:
        result = DispatchResult()
        for event in events:
            try:
                if isinstance(event, StatusChanged):
                    record_transition(event.old_status.value, event.new_status.value)
                    logger.info(
                        f"Job {job.id} moved {event.old_status.value} -> {event.new_status.value} "
                        f"({event.trigger.value})"
                    )
                elif isinstance(event, NotificationRequested):
                    result = result.merge(await self._notify(job, event))
                elif isinstance(event, MatchRequested):
                    result = result.merge(
                        await self.notify_candidates_for_job(job, event.exclude_ids, event.channel)
                    )
            except Exception:
                logger.exception(f"Failed to handle {type(event).__name__} for job {job.id}")
        return result

    async def language_name(self, language_id: int) -> str:
        language = await self.store.get_language(language_id)
        return language.name if language else ""

    async def base_context(self, job: Job) -> Dict[str, Any]:
        context: Dict[str, Any] = {"language": await self.language_name(job.from_language_id)}
        town = job.town
        if not town:
            try:
                town = (await self.store.get_user(job.customer_id)).city
            except NotFoundError:
                town = None
        context["town"] = town
        return context

    async def _users(self, ids: Sequence[int]) -> List[User]:
        users = []
        for user_id in ids:
            try:
                users.append(await self.store.get_user(user_id))
            except NotFoundError:
                logger.warning(f"Skipping notification to unknown user #{user_id}")
        return users

    async def _notify(self, job: Job, event: NotificationRequested) -> DispatchResult:
        context = await self.base_context(job)
        context.update(event.context)
        old_language_id = context.pop("old_language_id", None)
        if old_language_id is not None:
            context["old_lang"] = await self.language_name(old_language_id)
        recipients = await self._users(event.recipient_ids)
        return await self.dispatcher.notify(event.channel, recipients, job, event.kind, context)

    async def notify_user(
        self,
        job: Job,
        user: User,
        kind: TemplateKind,
        context: Optional[Dict[str, Any]] = None,
    ) -> DispatchResult:
        """Push one notification to a single user, honouring their push preferences."""
        if not self.matcher.is_need_to_send_push(user):
            push_logger.info(f"User #{user.id} has push notifications disabled, skipping {kind.value}")
            return DispatchResult()
        send_after = None
        if self.matcher.is_need_to_delay_push(user):
            send_after = next_business_time(self.matcher.clock.now(), self.business_start_hour)
        full_context = await self.base_context(job)
        full_context.update(context or {})
        return await self.dispatcher.notify(Channel.PUSH, [user], job, kind, full_context, send_after)

    async def notify_candidates_for_job(
        self,
        job: Job,
        exclude_ids: FrozenSet[int] = frozenset(),
        channel: Channel = Channel.PUSH,
    ) -> DispatchResult:
        candidates = await self.matcher.find_candidate_users(job)
        recipients = []
        for translator in candidates:
            if translator.id in exclude_ids:
                continue
            if job.immediate and translator.suppress_emergency:
                continue
            if await self.store.is_double_booked(translator.id, job):
                continue
            recipients.append(translator)

        context = await self.base_context(job)
        if channel == Channel.SMS:
            return await self.dispatcher.notify(Channel.SMS, recipients, job, TemplateKind.NEW_SUITABLE_JOB, context)

        recipients = [t for t in recipients if self.matcher.is_need_to_send_push(t)]
        delayed = [t for t in recipients if self.matcher.is_need_to_delay_push(t)]
        immediate = [t for t in recipients if t not in delayed]
        push_logger.info(
            f"Job {job.id} offer: immediate={[t.id for t in immediate]} delayed={[t.id for t in delayed]}"
        )

        result = await self.dispatcher.notify(
            Channel.PUSH, immediate, job, TemplateKind.NEW_SUITABLE_JOB, context
        )
        if delayed:
            send_after = next_business_time(self.matcher.clock.now(), self.business_start_hour)
            result = result.merge(
                await self.dispatcher.notify(
                    Channel.PUSH, delayed, job, TemplateKind.NEW_SUITABLE_JOB, context, send_after
                )
            )
        return result
