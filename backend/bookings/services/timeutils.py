"""
Time Helpers for Booking Rules

All booking timestamps are naive datetimes in the service's local time
zone (see Settings.timezone). The clock is injected so that tests and
the lifecycle engine never read the wall clock directly.

Key Functions:
    - to_local(): normalise incoming aware datetimes to local naive time
    - split_due() / join_due(): exact round trip at second precision
    - parse_booking_due(): "MM/DD/YYYY" + "HH:MM" from the booking form
    - will_expire_at(): deadline for a translator to accept a booking
    - session_interval(): elapsed "HH:MM:SS" between due and completion
    - is_night_time() / next_business_time(): delayed push window
"""

from datetime import datetime, time, timedelta
from typing import Protocol, Tuple
from zoneinfo import ZoneInfo

from bookings.services.errors import ValidationError

DUE_DATE_FORMAT = "%Y-%m-%d"
DUE_TIME_FORMAT = "%H:%M:%S"
BOOKING_FORM_FORMAT = "%m/%d/%Y %H:%M"


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in the configured local time zone, returned naive."""

    def __init__(self, timezone: str = "Europe/Stockholm"):
        self.tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None, microsecond=0)


class FixedClock:
    """Clock pinned to a given instant; `advance` moves it forward."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(**kwargs)
        return self.instant


def to_local(value: datetime, timezone: str) -> datetime:
    """Aware datetimes are converted to naive local time; naive ones are already local."""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)


def split_due(due: datetime) -> Tuple[str, str]:
    return due.strftime(DUE_DATE_FORMAT), due.strftime(DUE_TIME_FORMAT)


def join_due(due_date: str, due_time: str) -> datetime:
    return datetime.strptime(f"{due_date} {due_time}", f"{DUE_DATE_FORMAT} {DUE_TIME_FORMAT}")


def parse_booking_due(due_date: str, due_time: str) -> datetime:
    try:
        return datetime.strptime(f"{due_date} {due_time}", BOOKING_FORM_FORMAT)
    except ValueError:
        raise ValidationError("Ogiltigt datum eller tid", "due_date") from None


def will_expire_at(due: datetime, created_at: datetime) -> datetime:
    """
    Deadline after which an unaccepted booking times out.

    Short-notice bookings expire at their due time; the longer the lead
    time, the earlier relative to due the booking is given up on.
    """
    lead = due - created_at
    if lead <= timedelta(minutes=90):
        return due
    if lead <= timedelta(hours=24):
        return created_at + timedelta(minutes=90)
    if lead <= timedelta(hours=72):
        return created_at + timedelta(hours=16)
    return due - timedelta(hours=48)


def hours_until(now: datetime, due: datetime) -> int:
    """Whole hours left until due; negative once due has passed."""
    return int((due - now).total_seconds() // 3600)


def session_interval(start: datetime, end: datetime) -> str:
    seconds = max(int((end - start).total_seconds()), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_session_time(raw: str) -> str:
    """Normalise an admin-entered "H:MM" or "HH:MM:SS" session time."""
    parts = raw.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValidationError("Ogiltig sessionstid", "session_time")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if minutes >= 60 or seconds >= 60:
        raise ValidationError("Ogiltig sessionstid", "session_time")
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_session_time(session_time: str) -> str:
    hours, minutes = session_time.split(":")[:2]
    return f"{int(hours)} tim {int(minutes)} min"


def convert_to_hours_mins(minutes: int, fmt: str = "%02dh %02dmin") -> str:
    if minutes < 60:
        return f"{minutes}min"
    if minutes == 60:
        return "1h"
    return fmt % (minutes // 60, minutes % 60)


def is_night_time(now: datetime, night_start_hour: int = 22, business_start_hour: int = 7) -> bool:
    if night_start_hour > business_start_hour:
        return now.hour >= night_start_hour or now.hour < business_start_hour
    return night_start_hour <= now.hour < business_start_hour


def next_business_time(now: datetime, business_start_hour: int = 7) -> datetime:
    """The next `business_start_hour:00` strictly after `now`."""
    candidate = datetime.combine(now.date(), time(hour=business_start_hour))
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def format_due(due: datetime) -> str:
    return due.strftime("%Y-%m-%d %H:%M")
