"""
Route API Endpoints.

Drivers publish routes, add stops, cancel and finalize them; passengers
search for routes to book.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from backend.app.core.dependencies import Principal, get_current_user
from backend.app.core.guards import require_role
from backend.app.domain.routes.route_service import StopPoint
from backend.app.models.enums import UserRole
from backend.app.models.route_enums import Campus, RouteStatus
from backend.app.schemas.booking import BookingResponse
from backend.app.schemas.route import (
    RouteCancel, RouteCancelResponse, RouteCreate, RouteMapResponse, RouteResponse, RouteSearchResponse,
    RouteStatusResponse, StopIn
)
from backend.app.services.public_ids import PUBLIC_ID_PATTERN
from backend.app.wiring import Services, get_services

router = APIRouter(prefix="/routes", tags=["Routes"])

require_driver = require_role([UserRole.DRIVER])
require_passenger = require_role([UserRole.PASSENGER])


@router.post("", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    route: RouteCreate,
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """
    Publish a new route.

    The driver must be approved, above the minimum rating and own an active
    vehicle with at least `seats_total` seats.
    """
    return await services.routes.create_route(principal.user_id, route, context=principal)


@router.get("/available", response_model=RouteSearchResponse)
async def search_available_routes(
    seats: int = Query(1, ge=1, le=20),
    origin: Optional[Campus] = None,
    destination: Optional[str] = Query(None, max_length=255),
    departure_date: Optional[date] = Query(None, alias="date"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, ge=0.1, le=10),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    """
    Search bookable routes.

    With `lat`/`lng`, only routes with a stop within `radius_km` (default
    1 km) of that point are returned.
    """
    return await services.routes.search_available_routes(
        seats=seats,
        origin=origin,
        destination=destination,
        departure_date=departure_date,
        lat=lat,
        lng=lng,
        radius_km=radius_km,
        limit=limit,
        offset=offset,
    )


@router.get("/my", response_model=RouteSearchResponse)
async def list_my_routes(
    status_filter: Optional[RouteStatus] = Query(None, alias="status"),
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """The caller's routes, newest departure first. Cancelled routes only when asked for."""
    return await services.routes.list_my_routes(principal.user_id, status_filter, limit, offset)


@router.get("/{route_id}", response_model=RouteResponse)
async def get_route(
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.routes.get_route(route_id)


@router.get("/{route_id}/map", response_model=RouteMapResponse)
async def get_route_map(
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.routes.get_route_map(route_id)


@router.post("/{route_id}/stops", response_model=RouteResponse)
async def add_stop(
    stop: StopIn,
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """Insert a stop at the position that adds the shortest detour."""
    point = StopPoint(lat=stop.lat, lng=stop.lng, address=stop.address.strip())
    return await services.routes.add_stop(principal.user_id, route_id, point, context=principal)


@router.patch("/{route_id}/cancel", response_model=RouteCancelResponse)
async def cancel_route(
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    body: Optional[RouteCancel] = None,
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """
    Cancel an active route.

    Confirmed bookings are cancelled, pending payments failed and paid
    payments refunded.
    """
    reason = body.reason if body else None
    return await services.routes.cancel_route(route_id, principal.user_id, reason, context=principal)


@router.patch("/{route_id}/finalize", response_model=RouteStatusResponse)
async def finalize_route(
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.routes.finalize_route(route_id, principal.user_id, context=principal)


@router.get("/{route_id}/bookings", response_model=List[BookingResponse])
async def list_route_bookings(
    route_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.bookings.list_route_bookings(principal.user_id, route_id)
