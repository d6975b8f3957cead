from bookings.schemas.booking import (
    AcceptRequest,
    ActorRequest,
    BookingCreate,
    BookingResultResponse,
    BookingUpdate,
    CompleteRequest,
    JobHistoryResponse,
    JobListResponse,
    JobResponse,
    ReassignRequest,
    UserJobsResponse,
)

__all__ = [
    "ActorRequest",
    "AcceptRequest",
    "BookingCreate",
    "BookingResultResponse",
    "BookingUpdate",
    "CompleteRequest",
    "JobHistoryResponse",
    "JobListResponse",
    "JobResponse",
    "ReassignRequest",
    "UserJobsResponse",
]
