"""
Booking Domain Model

Plain dataclasses for the entities the lifecycle engine reasons about,
plus closed enums for every string-keyed value of the booking system.
Raw values coming from requests or storage go through `parse_enum`,
which rejects unknown values instead of letting them fall through.

Status Flow:
    pending → assigned → started → completed
    pending → timedout → pending (reopen)
    assigned → withdrawbefore24 / withdrawafter24 / timedout

Mapping Tables:
    - JOB_TYPE_BY_CONSUMER: customer consumer category → job type
    - TRANSLATOR_TYPE_BY_JOB_TYPE: job type → translator type
    - LEVELS_BY_CERTIFICATION: requested certification → translator levels
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Type, TypeVar

from bookings.services.errors import ValidationError


class JobStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    STARTED = "started"
    COMPLETED = "completed"
    WITHDRAWBEFORE24 = "withdrawbefore24"
    WITHDRAWAFTER24 = "withdrawafter24"
    TIMEDOUT = "timedout"


TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.WITHDRAWBEFORE24,
    JobStatus.WITHDRAWAFTER24,
})


class JobType(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    RWS = "rws"
    UNKNOWN = "unknown"


class ConsumerType(str, Enum):
    PAID = "paid"
    RWS = "rwsconsumer"
    NGO = "ngo"
    OTHER = "other"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class CertificationLevel(str, Enum):
    NORMAL = "normal"
    CERTIFIED = "yes"
    LAW = "law"
    HEALTH = "health"
    NORMAL_LAW = "n_law"
    NORMAL_HEALTH = "n_health"
    BOTH = "both"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    TRANSLATOR = "translator"
    ADMIN = "admin"


class TranslatorType(str, Enum):
    PROFESSIONAL = "professional"
    RWS = "rwstranslator"
    VOLUNTEER = "volunteer"


class TranslatorLevel(str, Enum):
    LAYMAN = "layman"
    CERTIFIED = "certified"
    CERTIFIED_LAW = "certified_law"
    CERTIFIED_HEALTH = "certified_health"
    READ_TRANSLATION_COURSES = "read_translation_courses"


JOB_TYPE_BY_CONSUMER: Dict[ConsumerType, JobType] = {
    ConsumerType.RWS: JobType.RWS,
    ConsumerType.NGO: JobType.UNPAID,
    ConsumerType.PAID: JobType.PAID,
    ConsumerType.OTHER: JobType.UNKNOWN,
}

# Jobs of type "unknown" have no translator pool
TRANSLATOR_TYPE_BY_JOB_TYPE: Dict[JobType, Optional[TranslatorType]] = {
    JobType.PAID: TranslatorType.PROFESSIONAL,
    JobType.RWS: TranslatorType.RWS,
    JobType.UNPAID: TranslatorType.VOLUNTEER,
    JobType.UNKNOWN: None,
}

_CERTIFIED_LEVELS = frozenset({
    TranslatorLevel.CERTIFIED,
    TranslatorLevel.CERTIFIED_LAW,
    TranslatorLevel.CERTIFIED_HEALTH,
})

ALL_LEVELS: FrozenSet[TranslatorLevel] = frozenset(TranslatorLevel)

LEVELS_BY_CERTIFICATION: Dict[CertificationLevel, FrozenSet[TranslatorLevel]] = {
    CertificationLevel.BOTH: _CERTIFIED_LEVELS,
    CertificationLevel.CERTIFIED: _CERTIFIED_LEVELS,
    CertificationLevel.LAW: frozenset({TranslatorLevel.CERTIFIED_LAW}),
    CertificationLevel.NORMAL_LAW: frozenset({TranslatorLevel.CERTIFIED_LAW}),
    CertificationLevel.HEALTH: frozenset({TranslatorLevel.CERTIFIED_HEALTH}),
    CertificationLevel.NORMAL_HEALTH: frozenset({TranslatorLevel.CERTIFIED_HEALTH}),
    CertificationLevel.NORMAL: frozenset({TranslatorLevel.LAYMAN}),
}


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], raw, field_name: Optional[str] = None) -> E:
    """
    Convert a raw value into a member of `enum_cls`.

    Raises:
        ValidationError: If the value is not a member of the enum
    """
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationError(
            f"Unknown {enum_cls.__name__} value: {raw!r}",
            field_name,
        ) from None


def levels_for(certification: Optional[CertificationLevel]) -> FrozenSet[TranslatorLevel]:
    """Translator levels acceptable for a requested certification (unset → any)."""
    if certification is None:
        return ALL_LEVELS
    return LEVELS_BY_CERTIFICATION[certification]


@dataclass
class Language:
    id: int
    name: str
    active: bool = True


@dataclass
class User:
    """
    Customer, translator or admin account.

    Attributes:
        role: Closed role enum; code dispatches on it instead of strings
        languages: Language ids a translator speaks
        blocked_by: Customer ids this translator must never be matched to
        suppress_emergency/nighttime/all: Translator notification opt-outs
    """
    id: int
    role: UserRole
    name: str
    email: str
    mobile: Optional[str] = None
    city: Optional[str] = None
    gender: Optional[Gender] = None
    suspended: bool = False
    consumer_type: Optional[ConsumerType] = None
    customer_type: Optional[str] = None
    translator_type: Optional[TranslatorType] = None
    translator_level: Optional[TranslatorLevel] = None
    languages: FrozenSet[int] = frozenset()
    blocked_by: FrozenSet[int] = frozenset()
    suppress_emergency: bool = False
    suppress_nighttime: bool = False
    suppress_all: bool = False


@dataclass
class Job:
    id: Optional[int]
    customer_id: int
    from_language_id: int
    duration: int
    due: datetime
    immediate: bool = False
    status: JobStatus = JobStatus.PENDING
    gender: Optional[Gender] = None
    certification_level: Optional[CertificationLevel] = None
    job_type: JobType = JobType.UNKNOWN
    customer_phone_type: bool = False
    customer_physical_type: bool = False
    admin_comments: str = ""
    session_time: Optional[str] = None
    created_at: Optional[datetime] = None
    will_expire_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    withdraw_at: Optional[datetime] = None
    user_email: Optional[str] = None
    reference: str = ""
    address: Optional[str] = None
    instructions: Optional[str] = None
    town: Optional[str] = None
    by_admin: bool = False
    email_sent: bool = False
    cust_16_hour_email: bool = False
    cust_48_hour_email: bool = False

    @property
    def ends_at(self) -> datetime:
        return self.due + timedelta(minutes=self.duration)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_physical_only(self) -> bool:
        """On-site booking with no phone option; requires a local translator."""
        return self.customer_physical_type and not self.customer_phone_type


@dataclass
class Assignment:
    """
    Link between a job and the translator performing it.

    An assignment is active while both `completed_at` and `cancel_at`
    are unset; once either is set it is terminal and never changes again.
    """
    job_id: int
    translator_id: int
    assigned_at: datetime
    id: Optional[int] = None
    completed_at: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    completed_by: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.completed_at is None and self.cancel_at is None


@dataclass
class UserCriteria:
    """Store-side prefilter for `Store.find_users`."""
    role: Optional[UserRole] = None
    include_suspended: bool = False
    exclude_ids: FrozenSet[int] = field(default_factory=frozenset)
