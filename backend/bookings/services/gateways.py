"""
Notification Gateways

Transport interfaces consumed by the NotificationDispatcher plus thin
production implementations. Gateways raise on failure; the dispatcher
isolates and records failures per recipient.

Interfaces:
    - Mailer.send(to_email, to_name, subject, template_kind, context)
    - SmsGateway.send(from_number, to_number, body) -> DeliveryStatus
    - PushGateway.send(recipient_tags, payload, send_after) -> dict

Implementations:
    - SmtpMailer: plain-text mail over SMTP (blocking client run in a thread)
    - HttpSmsGateway: form-encoded SMS REST API (46elks style)
    - OneSignalPushGateway: OneSignal notifications API with tag filters
"""

import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from bookings.services.templates import SoundProfile

logger = logging.getLogger(__name__)
push_logger = logging.getLogger("bookings.push")


@dataclass
class DeliveryStatus:
    delivered: bool
    detail: str = ""


@dataclass
class PushPayload:
    """
    Push notification body handed to the push gateway.

    Attributes:
        title: Notification title (brand name)
        contents: Localized body keyed by language code
        data: Correlation data; always carries `job_id`
        sound: Android/iOS sound derived from the booking's urgency
    """
    title: str
    contents: Dict[str, str]
    data: Dict[str, Any] = field(default_factory=dict)
    sound: SoundProfile = field(default_factory=SoundProfile)


@runtime_checkable
class Mailer(Protocol):
    async def send(
        self,
        to_email: str,
        to_name: str,
        subject: str,
        template_kind: str,
        context: Dict[str, Any],
    ) -> None:
        ...


@runtime_checkable
class SmsGateway(Protocol):
    async def send(self, from_number: str, to_number: str, body: str) -> DeliveryStatus:
        ...


@runtime_checkable
class PushGateway(Protocol):
    async def send(
        self,
        recipient_tags: List[str],
        payload: PushPayload,
        send_after: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        ...


class SmtpMailer:
    def __init__(self, host: str, port: int, user: str = "", password: str = "", from_email: str = ""):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email

    async def send(
        self,
        to_email: str,
        to_name: str,
        subject: str,
        template_kind: str,
        context: Dict[str, Any],
    ) -> None:
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = f"{to_name} <{to_email}>"
        msg["Subject"] = subject
        msg["X-Template"] = template_kind
        msg.set_content(str(context.get("body", "")))
        await asyncio.to_thread(self._deliver, msg)
        logger.info(f"Mail '{template_kind}' sent to {to_email}")

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port) as server:
            if self.user and self.password:
                server.starttls()
                server.login(self.user, self.password)
            server.send_message(msg)


class HttpSmsGateway:
    def __init__(self, api_url: str, username: str, password: str, timeout: float = 10.0):
        self.api_url = api_url
        self.auth = (username, password)
        self.timeout = timeout

    async def send(self, from_number: str, to_number: str, body: str) -> DeliveryStatus:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                data={"from": from_number, "to": to_number, "message": body},
                auth=self.auth,
            )
            response.raise_for_status()
            data = response.json()
        return DeliveryStatus(delivered=data.get("status") != "failed", detail=str(data.get("id", "")))


class OneSignalPushGateway:
    def __init__(self, api_url: str, app_id: str, api_key: str, timeout: float = 10.0):
        self.api_url = api_url
        self.app_id = app_id
        self.api_key = api_key
        self.timeout = timeout

    @staticmethod
    def tag_filters(recipient_tags: List[str]) -> List[Dict[str, str]]:
        """OneSignal tag filters matching any of the given emails."""
        filters: List[Dict[str, str]] = []
        for i, email in enumerate(recipient_tags):
            if i:
                filters.append({"operator": "OR"})
            filters.append({"key": "email", "relation": "=", "value": email})
        return filters

    def build_fields(
        self,
        recipient_tags: List[str],
        payload: PushPayload,
        send_after: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "app_id": self.app_id,
            "tags": self.tag_filters(recipient_tags),
            "data": payload.data,
            "title": {"en": payload.title},
            "contents": payload.contents,
            "ios_badgeType": "Increase",
            "ios_badgeCount": 1,
            "android_sound": payload.sound.android,
            "ios_sound": payload.sound.ios,
        }
        if send_after is not None:
            fields["send_after"] = send_after.strftime("%Y-%m-%d %H:%M:%S")
        return fields

    async def send(
        self,
        recipient_tags: List[str],
        payload: PushPayload,
        send_after: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        fields = self.build_fields(recipient_tags, payload, send_after)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                json=fields,
                headers={"Authorization": f"Basic {self.api_key}"},
            )
            response.raise_for_status()
            answer = response.json()
        push_logger.info(f"Push for job {payload.data.get('job_id')} answered: {answer}")
        return answer
