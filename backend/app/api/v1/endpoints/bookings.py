"""
Booking API Endpoints.

Passengers book and cancel seats; drivers gate the trip with the OTP and
close each booking as completed or no-show.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from backend.app.core.dependencies import Principal
from backend.app.core.guards import require_role
from backend.app.models.booking_enums import BookingStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.booking import (
    BookingCancelResponse, BookingCreate, BookingCreateResponse, BookingDetailResponse, BookingMapResponse,
    BookingResponse, BookingTransitionResponse, OtpVerifyRequest, OtpVerifyResponse
)
from backend.app.services.public_ids import PUBLIC_ID_PATTERN
from backend.app.wiring import Services, get_services

router = APIRouter(prefix="/bookings", tags=["Bookings"])

require_passenger = require_role([UserRole.PASSENGER])
require_driver = require_role([UserRole.DRIVER])


@router.post("", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking: BookingCreate,
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    """
    Book one seat on an active route.

    The response carries the trip OTP the passenger shows the driver at
    pickup.
    """
    return await services.bookings.create_booking(
        principal.user_id,
        booking.route_id,
        booking.payment_method,
        pickup_lat=booking.pickup_lat,
        pickup_lng=booking.pickup_lng,
        pickup_address=booking.pickup_address,
        context=principal,
    )


@router.get("/me", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.bookings.list_my_bookings(principal.user_id, status_filter)


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.bookings.get_booking(principal.user_id, booking_id)


@router.get("/{booking_id}/map", response_model=BookingMapResponse)
async def get_booking_map(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    """Route stops for a confirmed booking."""
    return await services.bookings.get_booking_map(principal.user_id, booking_id)


@router.patch("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.bookings.cancel_booking(principal.user_id, booking_id, context=principal)


@router.post("/{booking_id}/verify-otp", response_model=OtpVerifyResponse)
async def verify_otp(
    body: OtpVerifyRequest,
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.bookings.verify_otp(principal.user_id, booking_id, body.otp, context=principal)


@router.patch("/{booking_id}/complete", response_model=BookingTransitionResponse)
async def complete_booking(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.bookings.complete_booking(principal.user_id, booking_id, context=principal)


@router.patch("/{booking_id}/no-show", response_model=BookingTransitionResponse)
async def mark_no_show(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.bookings.mark_no_show(principal.user_id, booking_id, context=principal)
