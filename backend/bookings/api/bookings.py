"""
Booking Routes

Thin HTTP layer over BookingService. Every use case answers with the
same body shape ({status, message, field_name, job, data, ...}); failed
use cases map to 422 (validation), 409 (conflict) or 404 (not found).
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from bookings.api.deps import get_booking_service
from bookings.schemas import (
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
from bookings.services.booking import BookingResult, BookingService, JobChanges
from bookings.services.errors import NotFoundError, ValidationError

router = APIRouter()

STATUS_BY_ERROR = {"validation": 422, "conflict": 409, "not_found": 404}


def to_response(result: BookingResult, success_code: int = 200) -> JSONResponse:
    body = BookingResultResponse(
        status=result.status,
        message=result.message,
        field_name=result.field_name,
        job=JobResponse.model_validate(result.job) if result.job is not None else None,
        data=result.data,
        notifications_sent=result.notifications.sent,
        notification_failures=len(result.notifications.failures),
    )
    status_code = success_code if result.ok else STATUS_BY_ERROR.get(result.error, 400)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.post("", response_model=BookingResultResponse, status_code=201)
async def create_booking(
    payload: BookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    result = await service.create(payload.user_id, payload.model_dump(exclude={"user_id"}))
    return to_response(result, success_code=201)


@router.get("/potential/{translator_id}", response_model=JobListResponse)
async def potential_jobs(
    translator_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        jobs = await service.potential_jobs(translator_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return JobListResponse(jobs=[JobResponse.model_validate(job) for job in jobs], total=len(jobs))


@router.get("/users/{user_id}", response_model=UserJobsResponse)
async def user_jobs(
    user_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        listing = await service.user_jobs(user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return UserJobsResponse(
        user_type=listing.user.role.value,
        emergency_jobs=[JobResponse.model_validate(job) for job in listing.emergency],
        normal_jobs=[JobResponse.model_validate(job) for job in listing.normal],
    )


@router.get("/users/{user_id}/history", response_model=JobHistoryResponse)
async def user_jobs_history(
    user_id: int,
    page: int = Query(1, ge=1),
    service: BookingService = Depends(get_booking_service),
):
    try:
        history = await service.user_jobs_history(user_id, page)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return JobHistoryResponse(
        user_type=history.user.role.value,
        jobs=[JobResponse.model_validate(job) for job in history.jobs],
        page=history.page,
        num_pages=history.num_pages,
        total=history.total,
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_booking(
    job_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        job = await service.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return JobResponse.model_validate(job)


@router.get("/{job_id}/data")
async def get_booking_data(
    job_id: int,
    service: BookingService = Depends(get_booking_service),
):
    try:
        job = await service.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return await service.job_data(job)


@router.patch("/{job_id}", response_model=BookingResultResponse)
async def update_booking(
    job_id: int,
    payload: BookingUpdate,
    service: BookingService = Depends(get_booking_service),
):
    changes = JobChanges(**payload.model_dump(exclude={"user_id"}))
    return to_response(await service.update(job_id, changes, payload.user_id))


@router.post("/{job_id}/accept", response_model=BookingResultResponse)
async def accept_booking(
    job_id: int,
    payload: AcceptRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.accept(job_id, payload.user_id))


@router.post("/{job_id}/reassign", response_model=BookingResultResponse)
async def reassign_booking(
    job_id: int,
    payload: ReassignRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.reassign(job_id, payload.translator_id, payload.user_id))


@router.post("/{job_id}/cancel", response_model=BookingResultResponse)
async def cancel_booking(
    job_id: int,
    payload: ActorRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.cancel(job_id, payload.user_id))


@router.post("/{job_id}/start", response_model=BookingResultResponse)
async def start_booking(
    job_id: int,
    payload: ActorRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.start(job_id, payload.user_id))


@router.post("/{job_id}/end", response_model=BookingResultResponse)
async def end_booking(
    job_id: int,
    payload: ActorRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.end(job_id, payload.user_id))


@router.post("/{job_id}/complete", response_model=BookingResultResponse)
async def complete_booking(
    job_id: int,
    payload: CompleteRequest,
    service: BookingService = Depends(get_booking_service),
):
    result = await service.complete(job_id, payload.user_id, payload.admin_comments, payload.session_time)
    return to_response(result)


@router.post("/{job_id}/reopen", response_model=BookingResultResponse)
async def reopen_booking(
    job_id: int,
    payload: ActorRequest,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.reopen(job_id, payload.user_id))


@router.post("/{job_id}/notifications/resend", response_model=BookingResultResponse)
async def resend_notifications(
    job_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.resend_notifications(job_id))


@router.post("/{job_id}/notifications/resend-sms", response_model=BookingResultResponse)
async def resend_sms_notifications(
    job_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return to_response(await service.resend_sms_notifications(job_id))
