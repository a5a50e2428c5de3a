"""
Booking schemas.

Reservation, OTP trip gate and passenger/driver transitions.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from backend.app.models.booking_enums import PaymentMethod, RefundOutcome
from backend.app.schemas.route import RouteMapResponse, RouteResponse
from backend.app.services.public_ids import PUBLIC_ID_PATTERN


class BookingCreate(BaseModel):
    """
    Schema for booking a seat.

    Pickup fields are optional but must be sent together.
    """
    route_id: str = Field(..., pattern=PUBLIC_ID_PATTERN)
    payment_method: PaymentMethod
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    pickup_address: Optional[str] = Field(None, max_length=255)


class BookingResponse(BaseModel):
    """Schema for booking response. `otp` is only present for the passenger's own open bookings."""
    booking_id: str
    route_id: Optional[str] = None
    passenger_id: int
    status: str
    payment_method: str
    otp_used: bool
    otp: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class BookingCreateResponse(BookingResponse):
    message: str


class BookingDetailResponse(BookingResponse):
    payment_status: Optional[str] = None
    route: RouteResponse


class BookingMapResponse(RouteMapResponse):
    booking_id: str


class OtpVerifyRequest(BaseModel):
    otp: str = Field(..., pattern=r"^\d{6}$")


class OtpVerifyResponse(BaseModel):
    message: str
    booking_id: str
    otp_used: bool


class BookingTransitionResponse(BaseModel):
    """Response after a driver completes a booking or marks a no-show."""
    message: str
    booking_id: str
    status: str
    route_finalized: bool


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: str
    status: str
    refund: RefundOutcome


class CashDebtSettledResponse(BaseModel):
    message: str
    booking_id: str
    debt_resolved_at: datetime
