"""
Notification Dispatcher - Multi-Channel Fan-Out

Composes channel-specific messages for a job and sends them to a list of
recipients. The dispatcher is stateless: it never mutates jobs or
assignments and only reports how many recipients were reached.

Delivery Rules:
    - Recipients are sent to concurrently, at most `max_parallel` at a time
    - Every recipient call is bounded by `timeout` seconds; a slow or
      failing recipient is recorded as a failure and the rest continue
    - SMS is only used for new-suitable-job offers and is best-effort:
      failures are logged and reported, never escalated
    - Push batches may carry a `send_after` instant (delayed batch)

Usage:
    dispatcher = NotificationDispatcher(mailer, sms, push)
    result = await dispatcher.notify(
        Channel.EMAIL, [customer], job, TemplateKind.JOB_ACCEPTED,
        {"language": "Arabiska"},
    )
    if not result.ok:
        logger.warning(result.error())
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from bookings.middleware.metrics import record_notification
from bookings.services.domain import Job, User, UserRole
from bookings.services.errors import DispatchError
from bookings.services.gateways import Mailer, PushGateway, PushPayload, SmsGateway
from bookings.services.templates import (
    Channel,
    Message,
    TemplateKind,
    compose,
    compose_sms,
    job_to_data,
    sound_for,
)

logger = logging.getLogger(__name__)
push_logger = logging.getLogger("bookings.push")


@dataclass
class RecipientError:
    recipient_id: int
    channel: Channel
    error: str


@dataclass
class DispatchResult:
    sent: int = 0
    failures: List[RecipientError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        return DispatchResult(self.sent + other.sent, self.failures + other.failures)

    def error(self) -> Optional[DispatchError]:
        return DispatchError(self.failures) if self.failures else None


def recipient_email(user: User, job: Job) -> str:
    """Customers may route booking mail to a per-job address."""
    match user.role:
        case UserRole.CUSTOMER:
            return job.user_email or user.email
        case UserRole.TRANSLATOR | UserRole.ADMIN:
            return user.email


class NotificationDispatcher:
    """
    Sends one notification kind over one channel to many recipients.

    Attributes:
        mailer/sms/push: Injected transport gateways
        sms_from_number: Sender id for SMS offers
        push_title: Title shown on push notifications
        timeout: Per-recipient timeout in seconds
        max_parallel: Upper bound on concurrent recipient calls
    """

    def __init__(
        self,
        mailer: Mailer,
        sms: SmsGateway,
        push: PushGateway,
        sms_from_number: str = "DigitalTolk",
        push_title: str = "DigitalTolk",
        timeout: float = 5.0,
        max_parallel: int = 10,
    ):
        self.mailer = mailer
        self.sms = sms
        self.push = push
        self.sms_from_number = sms_from_number
        self.push_title = push_title
        self.timeout = timeout
        self.max_parallel = max_parallel

    async def notify(
        self,
        channel: Channel,
        recipients: Sequence[User],
        job: Job,
        template_kind: TemplateKind,
        context: Optional[Dict[str, Any]] = None,
        send_after: Optional[datetime] = None,
    ) -> DispatchResult:
        context = dict(context or {})
        if not recipients:
            return DispatchResult()

        if channel == Channel.SMS and template_kind != TemplateKind.NEW_SUITABLE_JOB:
            raise ValueError(f"SMS is only sent for {TemplateKind.NEW_SUITABLE_JOB.value}, not {template_kind.value}")

        message = compose(template_kind, job, context)
        senders: Dict[Channel, Callable[[User], Awaitable[None]]] = {
            Channel.EMAIL: lambda user: self._send_email(user, job, template_kind, message, context),
            Channel.SMS: lambda user: self._send_sms(user, job, context),
            Channel.PUSH: lambda user: self._send_push(user, job, template_kind, message, send_after),
        }
        send_one = senders[channel]

        if channel == Channel.PUSH:
            push_logger.info(
                f"Push {template_kind.value} for job {job.id} to {[u.id for u in recipients]}"
                f" send_after={send_after}: {message.body.sv}"
            )

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def guarded(user: User) -> Optional[RecipientError]:
            async with semaphore:
                try:
                    await asyncio.wait_for(send_one(user), timeout=self.timeout)
                except asyncio.TimeoutError:
                    return RecipientError(user.id, channel, f"timed out after {self.timeout}s")
                except Exception as e:
                    return RecipientError(user.id, channel, str(e) or e.__class__.__name__)
                return None

        outcomes = await asyncio.gather(*(guarded(user) for user in recipients))
        failures = [o for o in outcomes if o is not None]
        result = DispatchResult(sent=len(recipients) - len(failures), failures=failures)

        for failure in failures:
            logger.warning(
                f"{channel.value} {template_kind.value} for job {job.id} "
                f"failed for user {failure.recipient_id}: {failure.error}"
            )
        record_notification(channel.value, "sent", result.sent)
        record_notification(channel.value, "failed", len(failures))
        return result

    async def _send_email(
        self,
        user: User,
        job: Job,
        kind: TemplateKind,
        message: Message,
        context: Dict[str, Any],
    ) -> None:
        mail_context = {
            **context,
            "user_name": user.name,
            "job_id": job.id,
            "body": str(message.body),
        }
        await self.mailer.send(recipient_email(user, job), user.name, message.subject, kind.value, mail_context)

    async def _send_sms(self, user: User, job: Job, context: Dict[str, Any]) -> None:
        if not user.mobile:
            raise ValueError("no mobile number")
        status = await self.sms.send(self.sms_from_number, user.mobile, compose_sms(job, context.get("town")))
        logger.info(f"Sent SMS to {user.email} ({user.mobile}), status: {status}")
        if not status.delivered:
            raise RuntimeError(f"SMS not delivered: {status.detail}")

    async def _send_push(
        self,
        user: User,
        job: Job,
        kind: TemplateKind,
        message: Message,
        send_after: Optional[datetime],
    ) -> None:
        data: Dict[str, Any] = {"notification_type": kind.value}
        if kind == TemplateKind.NEW_SUITABLE_JOB:
            data.update(job_to_data(job))
        data["job_id"] = job.id
        payload = PushPayload(
            title=self.push_title,
            contents=message.body.as_dict(),
            data=data,
            sound=sound_for(kind, job),
        )
        await self.push.send([user.email], payload, send_after)
