"""
Job Model - SQLAlchemy ORM models for bookings and their assignments

`jobs` holds one row per booking request; `translator_job_rel` links a
booking to the translator performing it. Enum-valued columns are stored
as their string values and parsed back into domain enums by the store.

Status Flow:
    pending → assigned → started → completed
    pending → timedout → pending (reopen)
    assigned → withdrawbefore24 / withdrawafter24 / timedout
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from bookings.database import Base


class Job(Base):
    """
    Booking entity.

    Attributes:
        user_id: Owning customer
        due: Naive local start time of the session
        status: Lifecycle status (indexed)
        certified: Requested certification level, nullable
        will_expire_at: Deadline for a translator to accept (indexed)
        session_time: "HH:MM:SS", set on completion
        email_sent/cust_16_hour_email/cust_48_hour_email: reminder flags,
            cleared on reopen
    """

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    from_language_id = Column(Integer, ForeignKey("languages.id"), nullable=False)
    immediate = Column(Boolean, nullable=False, default=False)
    due = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    gender = Column(String(10), nullable=True)
    certified = Column(String(20), nullable=True)
    job_type = Column(String(20), nullable=False, default="unknown")
    customer_phone_type = Column(Boolean, nullable=False, default=False)
    customer_physical_type = Column(Boolean, nullable=False, default=False)
    admin_comments = Column(Text, nullable=False, default="")
    session_time = Column(String(20), nullable=True)
    created_at = Column(DateTime, nullable=True)
    will_expire_at = Column(DateTime, nullable=True, index=True)
    end_at = Column(DateTime, nullable=True)
    withdraw_at = Column(DateTime, nullable=True)
    user_email = Column(String(255), nullable=True)
    reference = Column(String(255), nullable=False, default="")
    address = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    town = Column(String(255), nullable=True)
    by_admin = Column(Boolean, nullable=False, default=False)
    email_sent = Column(Boolean, nullable=False, default=False)
    cust_16_hour_email = Column(Boolean, nullable=False, default=False)
    cust_48_hour_email = Column(Boolean, nullable=False, default=False)


class TranslatorJobRel(Base):
    """Assignment row; active while completed_at and cancel_at are both NULL."""

    __tablename__ = "translator_job_rel"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    cancel_at = Column(DateTime, nullable=True)
    completed_by = Column(Integer, nullable=True)
