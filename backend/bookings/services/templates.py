"""
Notification Message Templates

Every notification kind maps to one fixed text builder producing a
bilingual message: Swedish first (the customers' and translators' working
language), English second. Builders take the job plus a small context
dict (language name, old_time, old_lang, session_time, town, audience,
for_text) and never look anything up themselves.

Channels:
    - email: subject + body handed to the Mailer along with the context
    - push: body as OneSignal-style `contents` + sound profile
    - sms: single string, only for new-suitable-job offers
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from bookings.services.domain import CertificationLevel, Gender, Job, User
from bookings.services.timeutils import convert_to_hours_mins, format_due, split_due


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class TemplateKind(str, Enum):
    JOB_CREATED = "job-created"
    JOB_ACCEPTED = "job-accepted"
    JOB_CHANGED_TRANSLATOR = "job-changed-translator"
    JOB_CHANGED_DATE = "job-changed-date"
    JOB_CHANGED_LANGUAGE = "job-changed-language"
    JOB_CANCELLED_BY_CUSTOMER = "job-cancelled-by-customer"
    JOB_CANCELLED_BY_TRANSLATOR = "job-cancelled-by-translator"
    SESSION_ENDED = "session-ended"
    SESSION_REMINDER = "session-reminder"
    JOB_EXPIRED = "job-expired"
    JOB_REOPENED = "job-reopened"
    NEW_SUITABLE_JOB = "new-suitable-job"


class Audience(str, Enum):
    CUSTOMER = "customer"
    TRANSLATOR = "translator"
    OLD_TRANSLATOR = "old_translator"
    NEW_TRANSLATOR = "new_translator"


@dataclass(frozen=True)
class LocalizedText:
    sv: str
    en: str

    def as_dict(self) -> Dict[str, str]:
        return {"sv": self.sv, "en": self.en}

    def __str__(self) -> str:
        return f"{self.sv}\n\n{self.en}"


@dataclass(frozen=True)
class Message:
    subject: str
    body: LocalizedText


@dataclass(frozen=True)
class SoundProfile:
    android: str = "default"
    ios: str = "default"


NORMAL_BOOKING_SOUND = SoundProfile("normal_booking", "normal_booking.mp3")
EMERGENCY_BOOKING_SOUND = SoundProfile("emergency_booking", "emergency_booking.mp3")

CHANGE_SUBJECT = "Meddelande om ändring av tolkbokning för uppdrag # {id}"
SESSION_ENDED_SUBJECT = "Information om avslutad tolkning för bokningsnummer # {id}"


def _fields(job: Job, context: Dict[str, Any]) -> Dict[str, Any]:
    due_date, due_time = split_due(job.due)
    return {
        "id": job.id,
        "language": context.get("language", ""),
        "duration": job.duration,
        "due": format_due(job.due),
        "date": due_date,
        "time": due_time[:5],
        "town": context.get("town") or job.town or "",
        "old_time": context.get("old_time", ""),
        "old_lang": context.get("old_lang", ""),
        "session_time": context.get("session_time", ""),
        "for_text": context.get("for_text", ""),
    }


def _job_created(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        f"Vi har mottagit er tolkbokning. Bokningsnr: #{f['id']}",
        LocalizedText(
            f"Vi har mottagit er bokning av {f['language']}tolk {f['due']} ({f['duration']} min).",
            f"We have received your booking for a {f['language']} interpreter on {f['due']} ({f['duration']} min).",
        ),
    )


def _job_accepted(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    subject = f"Bekräftelse - tolk har accepterat er bokning (bokning # {f['id']})"
    if ctx.get("audience") == Audience.TRANSLATOR:
        body = LocalizedText(
            f"Du har nu accepterat och fått bokningen för {f['language']} tolk {f['duration']} min {f['due']}.",
            f"You have accepted the booking for a {f['language']} interpreter, {f['duration']} min, {f['due']}.",
        )
    else:
        body = LocalizedText(
            f"Din bokning för {f['language']} tolk, {f['duration']} min, {f['due']} har accepterats av en tolk. "
            "Vänligen öppna appen för att se detaljer om tolken.",
            f"Your booking for a {f['language']} interpreter, {f['duration']} min, {f['due']} has been accepted. "
            "Open the app to see the interpreter's details.",
        )
    return Message(subject, body)


def _job_changed_translator(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    audience = ctx.get("audience")
    if audience == Audience.OLD_TRANSLATOR:
        body = LocalizedText(
            f"Du är inte längre tilldelad bokning #{f['id']} ({f['language']}, {f['due']}).",
            f"You are no longer assigned to booking #{f['id']} ({f['language']}, {f['due']}).",
        )
    elif audience == Audience.NEW_TRANSLATOR:
        body = LocalizedText(
            f"Du har tilldelats bokning #{f['id']}: {f['language']} tolk, {f['duration']} min, {f['due']}.",
            f"You have been assigned booking #{f['id']}: {f['language']} interpreter, {f['duration']} min, {f['due']}.",
        )
    else:
        body = LocalizedText(
            f"Tolken för er bokning #{f['id']} har bytts ut.",
            f"The interpreter for your booking #{f['id']} has been changed.",
        )
    return Message(CHANGE_SUBJECT.format(id=f["id"]), body)


def _job_changed_date(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        CHANGE_SUBJECT.format(id=f["id"]),
        LocalizedText(
            f"Tiden för bokning #{f['id']} har ändrats från {f['old_time']} till {f['due']}.",
            f"The time of booking #{f['id']} has changed from {f['old_time']} to {f['due']}.",
        ),
    )


def _job_changed_language(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        CHANGE_SUBJECT.format(id=f["id"]),
        LocalizedText(
            f"Språket för bokning #{f['id']} har ändrats från {f['old_lang']} till {f['language']}.",
            f"The language of booking #{f['id']} has changed from {f['old_lang']} to {f['language']}.",
        ),
    )


def _job_cancelled_by_customer(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    if ctx.get("audience") == Audience.TRANSLATOR:
        body = LocalizedText(
            f"Kunden har avbokat bokningen för {f['language']} tolk, {f['duration']} min, {f['due']}. "
            "Var god och kolla dina tidigare bokningar för detaljer.",
            f"The customer has cancelled the booking for a {f['language']} interpreter, {f['duration']} min, "
            f"{f['due']}. Check your previous bookings for details.",
        )
    else:
        body = LocalizedText(
            f"Er bokning #{f['id']} för {f['language']} tolk {f['due']} är avbokad.",
            f"Your booking #{f['id']} for a {f['language']} interpreter on {f['due']} is cancelled.",
        )
    return Message(f"Avbokning av bokningsnr: #{f['id']}", body)


def _job_cancelled_by_translator(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        CHANGE_SUBJECT.format(id=f["id"]),
        LocalizedText(
            f"Er {f['language']} tolk, {f['duration']} min {f['due']}, har avbokat tolkningen. "
            "Vi letar nu efter en ny tolk som kan ersätta denne. Tack.",
            f"Your {f['language']} interpreter, {f['duration']} min {f['due']}, has cancelled. "
            "We are now looking for a replacement. Thank you.",
        ),
    )


def _session_ended(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        SESSION_ENDED_SUBJECT.format(id=f["id"]),
        LocalizedText(
            f"Tolkningen för bokning #{f['id']} är avslutad. Tid för {f['for_text']}: {f['session_time']}.",
            f"The session for booking #{f['id']} has ended. Time for {f['for_text']}: {f['session_time']}.",
        ),
    )


def _session_reminder(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    if job.customer_physical_type:
        where_sv, where_en = f"på plats i {f['town']}", f"on site in {f['town']}"
    else:
        where_sv, where_en = "telefon", "phone"
    return Message(
        f"Påminnelse om tolkning #{f['id']}",
        LocalizedText(
            f"Detta är en påminnelse om att du har en {f['language']} tolkning ({where_sv}) kl {f['time']} "
            f"på {f['date']} som varar i {f['duration']} min. Lycka till och kom ihåg att ge feedback "
            "efter utförd tolkning!",
            f"Reminder: you have a {f['language']} session ({where_en}) at {f['time']} on {f['date']} "
            f"lasting {f['duration']} min. Good luck, and remember to give feedback afterwards!",
        ),
    )


def _job_expired(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        f"Ingen tolk har accepterat er bokning #{f['id']}",
        LocalizedText(
            f"Tyvärr har ingen tolk accepterat er bokning: ({f['language']}, {f['duration']} min, {f['due']}). "
            "Vänligen pröva boka om tiden.",
            f"Unfortunately no interpreter accepted your booking ({f['language']}, {f['duration']} min, "
            f"{f['due']}). Please try booking another time.",
        ),
    )


def _job_reopened(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    return Message(
        f"Vi har nu återöppnat er bokning av {f['language']}tolk för bokning #{f['id']}",
        LocalizedText(
            f"Vi har nu återöppnat er bokning av {f['language']}tolk för bokning #{f['id']}.",
            f"We have reopened your booking #{f['id']} for a {f['language']} interpreter.",
        ),
    )


def _new_suitable_job(job: Job, ctx: Dict[str, Any]) -> Message:
    f = _fields(job, ctx)
    if job.immediate:
        body = LocalizedText(
            f"Ny akutbokning för {f['language']} tolk {f['duration']}min",
            f"New urgent booking for a {f['language']} interpreter {f['duration']}min",
        )
    else:
        body = LocalizedText(
            f"Ny bokning för {f['language']} tolk {f['duration']}min {f['due']}",
            f"New booking for a {f['language']} interpreter {f['duration']}min {f['due']}",
        )
    return Message(f"Ny bokning #{f['id']}", body)


BUILDERS: Dict[TemplateKind, Callable[[Job, Dict[str, Any]], Message]] = {
    TemplateKind.JOB_CREATED: _job_created,
    TemplateKind.JOB_ACCEPTED: _job_accepted,
    TemplateKind.JOB_CHANGED_TRANSLATOR: _job_changed_translator,
    TemplateKind.JOB_CHANGED_DATE: _job_changed_date,
    TemplateKind.JOB_CHANGED_LANGUAGE: _job_changed_language,
    TemplateKind.JOB_CANCELLED_BY_CUSTOMER: _job_cancelled_by_customer,
    TemplateKind.JOB_CANCELLED_BY_TRANSLATOR: _job_cancelled_by_translator,
    TemplateKind.SESSION_ENDED: _session_ended,
    TemplateKind.SESSION_REMINDER: _session_reminder,
    TemplateKind.JOB_EXPIRED: _job_expired,
    TemplateKind.JOB_REOPENED: _job_reopened,
    TemplateKind.NEW_SUITABLE_JOB: _new_suitable_job,
}


def compose(kind: TemplateKind, job: Job, context: Optional[Dict[str, Any]] = None) -> Message:
    return BUILDERS[kind](job, context or {})


def compose_sms(job: Job, town: Optional[str] = None) -> str:
    """SMS offer for a new booking; physical-only jobs name the town."""
    due_date = job.due.strftime("%d.%m.%Y")
    due_time = job.due.strftime("%H:%M")
    duration = convert_to_hours_mins(job.duration)
    if job.customer_physical_type and not job.customer_phone_type:
        text = LocalizedText(
            f"Ny tolkbokning på plats i {town or job.town or ''} den {due_date} kl {due_time}, {duration}. "
            f"Bokningsnr #{job.id}. Öppna appen för att acceptera.",
            f"New on-site booking in {town or job.town or ''} on {due_date} at {due_time}, {duration}. "
            f"Booking #{job.id}. Open the app to accept.",
        )
    else:
        text = LocalizedText(
            f"Ny telefontolkning den {due_date} kl {due_time}, {duration}. "
            f"Bokningsnr #{job.id}. Öppna appen för att acceptera.",
            f"New phone booking on {due_date} at {due_time}, {duration}. "
            f"Booking #{job.id}. Open the app to accept.",
        )
    return str(text)


def sound_for(kind: TemplateKind, job: Job) -> SoundProfile:
    if kind != TemplateKind.NEW_SUITABLE_JOB:
        return SoundProfile()
    return EMERGENCY_BOOKING_SOUND if job.immediate else NORMAL_BOOKING_SOUND


# ==================== Job payloads ====================

CERTIFICATION_LABELS: Dict[CertificationLevel, List[str]] = {
    CertificationLevel.BOTH: ["Godkänd tolk", "Auktoriserad"],
    CertificationLevel.CERTIFIED: ["Auktoriserad"],
    CertificationLevel.HEALTH: ["Sjukvårdstolk"],
    CertificationLevel.NORMAL_HEALTH: ["Sjukvårdstolk"],
    CertificationLevel.LAW: ["Rättstolk"],
    CertificationLevel.NORMAL_LAW: ["Rättstolk"],
    CertificationLevel.NORMAL: ["normal"],
}


def job_for_labels(job: Job) -> List[str]:
    """Display labels for the job's gender and certification requirements."""
    labels = []
    if job.gender == Gender.MALE:
        labels.append("Man")
    elif job.gender == Gender.FEMALE:
        labels.append("Kvinna")
    if job.certification_level is not None:
        labels.extend(CERTIFICATION_LABELS[job.certification_level])
    return labels


def job_to_data(job: Job, customer: Optional[User] = None) -> Dict[str, Any]:
    """Flat job payload attached to push notifications and API responses."""
    due_date, due_time = split_due(job.due)
    return {
        "job_id": job.id,
        "from_language_id": job.from_language_id,
        "immediate": "yes" if job.immediate else "no",
        "duration": job.duration,
        "status": job.status.value,
        "gender": job.gender.value if job.gender else None,
        "certified": job.certification_level.value if job.certification_level else None,
        "due": f"{due_date} {due_time}",
        "due_date": due_date,
        "due_time": due_time,
        "job_type": job.job_type.value,
        "customer_phone_type": "yes" if job.customer_phone_type else "no",
        "customer_physical_type": "yes" if job.customer_physical_type else "no",
        "customer_town": job.town or (customer.city if customer else None),
        "customer_type": customer.customer_type if customer else None,
        "job_for": job_for_labels(job),
    }
