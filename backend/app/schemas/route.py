"""
Route schemas.

Publication, stop insertion and lifecycle responses for driver routes.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, time

from backend.app.models.route_enums import Campus


class StopIn(BaseModel):
    """A point on the route, in WGS84 degrees."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str = Field(..., min_length=1, max_length=255)


class RouteCreate(BaseModel):
    """Schema for publishing a route."""
    origin: Campus
    departure_date: date
    departure_time: time
    destination: str = Field(..., min_length=1, max_length=255)
    seats_total: int = Field(..., ge=1, le=20)
    price_per_seat: float = Field(..., gt=0)
    stops: List[StopIn] = []


class RouteCancel(BaseModel):
    """Schema for cancelling a route."""
    reason: Optional[str] = Field(None, max_length=500, description="Shown to affected passengers")


class StopResponse(BaseModel):
    stop_id: str
    lat: float
    lng: float
    address: str
    order: int


class RouteResponse(BaseModel):
    """Schema for route response."""
    route_id: str
    origin: str
    departure_date: date
    departure_time: time
    destination: str
    seats_total: int
    seats_available: int
    price_per_seat: float
    status: str
    message: Optional[str] = None
    stops: List[StopResponse] = []


class RouteStatusResponse(BaseModel):
    message: str
    route_id: str
    status: str


class RouteCancelResponse(RouteStatusResponse):
    """Outcome of the booking and payment sweep that follows a cancellation."""
    cancelled_bookings: int
    reversed_payments: int
    failed_payments: int


class RouteSearchResponse(BaseModel):
    routes: List[RouteResponse]
    total: int


class RouteMapResponse(BaseModel):
    """Ordered stop coordinates; the client draws the map."""
    route_id: str
    status: str
    stops: List[StopResponse]
