from fastapi import Request

from bookings.services.booking import BookingService


def get_booking_service(request: Request) -> BookingService:
    """BookingService built once in the app lifespan."""
    return request.app.state.booking_service
