from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from bookings.services.domain import (
    CertificationLevel,
    Gender,
    JobStatus,
    JobType,
)


class ActorRequest(BaseModel):
    # Authentication is handled outside this service; the caller names the actor
    user_id: int


class BookingCreate(ActorRequest):
    """
    Booking form. Field-level validation happens in BookingService so that
    failures come back as {status: fail, message, field_name}.
    """
    from_language_id: Optional[int] = None
    immediate: Union[bool, str] = "no"
    due_date: Optional[str] = Field(None, description="MM/DD/YYYY")
    due_time: Optional[str] = Field(None, description="HH:MM")
    duration: Optional[int] = None
    customer_phone_type: Optional[Union[bool, str]] = None
    customer_physical_type: Optional[Union[bool, str]] = None
    job_for: List[str] = []
    user_email: Optional[str] = None
    reference: Optional[str] = None
    address: Optional[str] = None
    instructions: Optional[str] = None
    town: Optional[str] = None
    by_admin: Union[bool, str] = "no"


class AcceptRequest(ActorRequest):
    pass


class ReassignRequest(ActorRequest):
    translator_id: int


class CompleteRequest(ActorRequest):
    admin_comments: str
    session_time: Optional[str] = Field(None, description="HH:MM or HH:MM:SS")


class BookingUpdate(ActorRequest):
    translator_id: Optional[int] = None
    due: Optional[datetime] = None
    from_language_id: Optional[int] = None
    status: Optional[JobStatus] = None
    admin_comments: Optional[str] = None
    session_time: Optional[str] = None
    reference: Optional[str] = None


class JobResponse(BaseModel):
    id: int
    customer_id: int
    from_language_id: int
    duration: int
    due: datetime
    immediate: bool
    status: JobStatus
    gender: Optional[Gender] = None
    certification_level: Optional[CertificationLevel] = None
    job_type: JobType
    customer_phone_type: bool
    customer_physical_type: bool
    admin_comments: str = ""
    session_time: Optional[str] = None
    created_at: Optional[datetime] = None
    will_expire_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    withdraw_at: Optional[datetime] = None
    reference: str = ""
    town: Optional[str] = None

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    total: int


class BookingResultResponse(BaseModel):
    status: str
    message: str = ""
    field_name: Optional[str] = None
    job: Optional[JobResponse] = None
    data: Dict[str, Any] = {}
    notifications_sent: int = 0
    notification_failures: int = 0


class UserJobsResponse(BaseModel):
    user_type: str
    emergency_jobs: List[JobResponse]
    normal_jobs: List[JobResponse]


class JobHistoryResponse(BaseModel):
    user_type: str
    jobs: List[JobResponse]
    page: int
    num_pages: int
    total: int
