"""
Booking Error Taxonomy

Precondition failures abort a use case before anything is written:
    - ValidationError: missing/invalid booking input (carries field_name)
    - ConflictError: illegal transition, double booking, job already taken
    - NotFoundError: unknown job/user/language id

DispatchError describes notification failures. It is reported in the
use case result and logged, never raised out of a committed transition.
"""

from typing import List, Optional


class BookingError(Exception):
    """Base class for booking failures surfaced to the caller."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class ConflictError(BookingError):
    pass


class NotFoundError(BookingError):
    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} #{entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class DispatchError(BookingError):
    """One or more recipients could not be notified."""

    def __init__(self, failures: List):
        recipients = ", ".join(str(f.recipient_id) for f in failures)
        super().__init__(f"Notification failed for recipients: {recipients}")
        self.failures = failures
