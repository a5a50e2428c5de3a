"""
Route Inventory Service (Domain Logic).

Owns the Route + RouteStop aggregate: publication, seat inventory, pickup
stop insertion, cancellation with its payment sweep, and finalization.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import Settings
from backend.app.core.exceptions import (
    ConflictError, ForbiddenError, GatewayError, NotFoundError, ValidationError
)
from backend.app.core.logging_setup import get_logger
from backend.app.db.unit_of_work import UnitOfWork, unit_of_work
from backend.app.domain.billing.payment_service import PaymentService, mark_pending_failed
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking_enums import BookingStatus
from backend.app.models.driver import Driver
from backend.app.models.enums import DriverStatus
from backend.app.models.route import Route, RouteStop
from backend.app.models.route_enums import Campus, RouteStatus
from backend.app.schemas.route import RouteCreate
from backend.app.services.audit import AuditAction, AuditService
from backend.app.services.public_ids import PublicIdPrefix, allocate_public_id
from backend.app.services.route_geometry import haversine_distance, plan_stop_insertion

logger = get_logger(__name__)

ROUTE_CANCELLED_REASON = "Route cancelled"


@dataclass(frozen=True)
class StopPoint:
    lat: float
    lng: float
    address: str


def stop_view(stop: RouteStop) -> Dict[str, Any]:
    return {"stop_id": stop.public_id, "lat": stop.lat, "lng": stop.lng, "address": stop.address, "order": stop.order}


def route_view(route: Route, stops: List[RouteStop]) -> Dict[str, Any]:
    return {
        "route_id": route.public_id,
        "origin": route.origin.value,
        "departure_date": route.departure_date,
        "departure_time": route.departure_time,
        "destination": route.destination,
        "seats_total": route.seats_total,
        "seats_available": route.seats_available,
        "price_per_seat": route.price_per_seat,
        "status": route.status.value,
        "message": route.message,
        "stops": [stop_view(s) for s in stops],
    }


def route_map_view(route: Route, stops: List[RouteStop]) -> Dict[str, Any]:
    return {
        "route_id": route.public_id,
        "status": route.status.value,
        "stops": [stop_view(s) for s in stops],
    }


class RouteService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        payments: PaymentService,
        audit: AuditService,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.payments = payments
        self.audit = audit
        self.settings = settings
        self.clock = clock

    async def require_approved_driver(self, uow: UnitOfWork, user_id: int) -> Driver:
        driver = await uow.drivers.get_by_user_id(user_id)
        if not driver:
            raise NotFoundError("Driver")
        if driver.status != DriverStatus.APPROVED:
            raise ForbiddenError("Driver is not approved")
        return driver

    async def _owned_route(self, uow: UnitOfWork, user_id: int, route_id: str, for_update: bool = False) -> Route:
        driver = await self.require_approved_driver(uow, user_id)
        route = await uow.routes.get_by_public_id(route_id, for_update=for_update)
        if not route:
            raise NotFoundError("Route", route_id)
        if route.driver_id != driver.id:
            raise ForbiddenError("Route does not belong to you")
        return route

    # Publication

    async def create_route(self, driver_user_id: int, payload: RouteCreate, context=None) -> Dict[str, Any]:
        """
        Publish a route for an approved, well-rated driver with an active vehicle.

        Raises:
            NotFoundError: Caller is not a driver or has no active vehicle
            ForbiddenError: Driver not approved, rating-blocked or under the minimum rating
            ValidationError: Seats exceed vehicle capacity, price not positive, departure in the past
        """
        async with self.audit.failures(AuditAction.ROUTE_CREATED, driver_user_id, context):
            async with unit_of_work(self.session_factory) as uow:
                driver = await self.require_approved_driver(uow, driver_user_id)

                profile = await uow.drivers.get_profile(driver_user_id)
                if profile and (profile.is_rating_blocked or profile.rating_average < self.settings.min_rating):
                    raise ForbiddenError("Driver rating is below the required minimum")

                vehicle = await uow.drivers.get_active_vehicle(driver.id)
                if not vehicle:
                    raise NotFoundError("Active vehicle")
                if payload.seats_total > vehicle.seats:
                    raise ValidationError(
                        "Seats exceed vehicle capacity",
                        details={"vehicle_seats": vehicle.seats, "requested": payload.seats_total},
                    )
                if payload.price_per_seat <= 0:
                    raise ValidationError("Route price must be greater than zero")
                if datetime.combine(payload.departure_date, payload.departure_time) <= self.clock():
                    raise ValidationError("Departure must be in the future")

                route = Route(
                    public_id=await allocate_public_id(uow.session, Route, PublicIdPrefix.ROUTE),
                    driver_id=driver.id,
                    origin=payload.origin,
                    departure_date=payload.departure_date,
                    departure_time=payload.departure_time,
                    destination=payload.destination,
                    seats_total=payload.seats_total,
                    seats_available=payload.seats_total,
                    price_per_seat=round(payload.price_per_seat, 2),
                    status=RouteStatus.ACTIVE,
                )
                uow.add(route)
                await uow.flush()

                stops = []
                for index, point in enumerate(payload.stops, start=1):
                    stop = RouteStop(
                        public_id=await allocate_public_id(uow.session, RouteStop, PublicIdPrefix.STOP),
                        route_id=route.id,
                        lat=point.lat,
                        lng=point.lng,
                        address=point.address,
                        order=index,
                    )
                    uow.add(stop)
                    stops.append(stop)
                await uow.flush()

        await self.audit.log_event(
            AuditAction.ROUTE_CREATED, driver_user_id, context=context,
            metadata={"route_id": route.public_id, "seats_total": route.seats_total},
        )
        return route_view(route, stops)

    async def get_route(self, route_id: str) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            route = await uow.routes.get_by_public_id(route_id)
            if not route:
                raise NotFoundError("Route", route_id)
            stops = await uow.routes.list_stops(route.id)
        return route_view(route, stops)

    # Discovery

    async def search_available_routes(
        self,
        seats: int = 1,
        origin: Optional[Campus] = None,
        destination: Optional[str] = None,
        departure_date: Optional[date] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius_km: Optional[float] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Bookable routes: ACTIVE, not yet departed, with `seats` free.

        With a location, only routes having a stop within `radius_km`
        (haversine) of it are kept.

        Raises:
            ValidationError: If only one of lat, lng is given
        """
        if (lat is None) != (lng is None):
            raise ValidationError("Location requires lat and lng together")
        radius_km = radius_km or self.settings.route_search_radius_km
        now = self.clock()

        async with unit_of_work(self.session_factory) as uow:
            candidates = await uow.routes.search_active(
                seats, now.date(), origin=origin, destination=(destination or "").strip() or None,
                departure_date=departure_date,
            )
            candidates = [route for route in candidates if route.departure_at > now]
            stops = await uow.routes.list_stops_for_routes([route.id for route in candidates])

        if lat is not None:
            candidates = [
                route for route in candidates
                if any(haversine_distance(lat, lng, s.lat, s.lng) <= radius_km for s in stops[route.id])
            ]
        page = candidates[offset:offset + limit]
        return {"routes": [route_view(route, stops[route.id]) for route in page], "total": len(candidates)}

    async def list_my_routes(self, driver_user_id: int, status: Optional[RouteStatus] = None,
                             limit: int = 10, offset: int = 0) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            driver = await uow.drivers.get_by_user_id(driver_user_id)
            if not driver:
                raise NotFoundError("Driver")
            routes, total = await uow.routes.page_for_driver(driver.id, status, limit, offset)
            stops = await uow.routes.list_stops_for_routes([route.id for route in routes])
        return {"routes": [route_view(route, stops[route.id]) for route in routes], "total": total}

    async def get_route_map(self, route_id: str) -> Dict[str, Any]:
        """Ordered stop coordinates for drawing the route."""
        async with unit_of_work(self.session_factory) as uow:
            route = await uow.routes.get_by_public_id(route_id)
            if not route:
                raise NotFoundError("Route", route_id)
            stops = await uow.routes.list_stops(route.id)
        return route_map_view(route, stops)

    # Seat inventory, always inside the caller's transaction

    async def reserve_seat(self, uow: UnitOfWork, route_id: int) -> None:
        await uow.routes.reserve_seat(route_id)

    async def release_seat(self, uow: UnitOfWork, route_id: int) -> None:
        if not await uow.routes.release_seat(route_id):
            logger.warning("Seat release on route %s ignored: already at capacity", route_id)

    # Stops

    async def insert_stop(self, uow: UnitOfWork, route_id: int, point: StopPoint) -> RouteStop:
        """Insert `point` at the cheapest detour position, shifting later stops."""
        stops = await uow.routes.list_stops(route_id)
        plan = plan_stop_insertion(stops, point.lat, point.lng)
        await uow.routes.shift_stops(plan.shifted)

        stop = RouteStop(
            public_id=await allocate_public_id(uow.session, RouteStop, PublicIdPrefix.STOP),
            route_id=route_id,
            lat=point.lat,
            lng=point.lng,
            address=point.address,
            order=plan.new_order,
        )
        uow.add(stop)
        await uow.flush()
        return stop

    async def add_stop(self, driver_user_id: int, route_id: str, point: StopPoint, context=None) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            route = await self._owned_route(uow, driver_user_id, route_id, for_update=True)
            if route.status != RouteStatus.ACTIVE:
                raise ConflictError("Route is not active")
            stop = await self.insert_stop(uow, route.id, point)
            stops = await uow.routes.list_stops(route.id)

        await self.audit.log_event(
            AuditAction.ROUTE_STOP_ADDED, driver_user_id, context=context,
            metadata={"route_id": route_id, "stop_id": stop.public_id, "order": stop.order},
        )
        return route_view(route, stops)

    # Lifecycle

    async def cancel_route(self, route_id: str, actor_id: int, reason: Optional[str] = None,
                           context=None) -> Dict[str, Any]:
        """
        Cancel an ACTIVE route and sweep its bookings and payments.

        Bookings and PENDING payments change in one transaction. PAID payments
        are then reversed one by one; a failed reversal leaves that payment
        FAILED and does not stop the sweep or undo the cancellation.
        """
        now = self.clock()
        async with self.audit.failures(
            AuditAction.ROUTE_CANCELLED_DRIVER, actor_id, context, {"route_id": route_id},
        ):
            async with unit_of_work(self.session_factory) as uow:
                route = await self._owned_route(uow, actor_id, route_id, for_update=True)
                if route.status != RouteStatus.ACTIVE:
                    raise ConflictError("Only active routes can be cancelled", details={"status": route.status.value})

                route.status = RouteStatus.CANCELLED
                route.message = (reason or "").strip() or None

                bookings = await uow.bookings.list_for_route(route.id, BookingStatus.CONFIRMED)
                for booking in bookings:
                    booking.status = BookingStatus.CANCELLED
                    booking.cancelled_at = now
                    await self.release_seat(uow, route.id)

                failed_pending = 0
                to_reverse = []
                for payment in await uow.payments.list_for_bookings([b.id for b in bookings]):
                    if mark_pending_failed(payment, ROUTE_CANCELLED_REASON):
                        failed_pending += 1
                    elif payment.status == PaymentStatus.PAID:
                        to_reverse.append(payment.public_id)

        reversed_count, refund_failures = 0, 0
        for payment_id in to_reverse:
            try:
                await self.payments.reverse_payment(payment_id, actor_id=actor_id, context=context)
                reversed_count += 1
            except GatewayError as exc:
                refund_failures += 1
                logger.warning("Route %s: refund of %s failed: %s", route_id, payment_id, exc.reason)
            except ConflictError:
                logger.warning("Route %s: payment %s changed state before refund", route_id, payment_id)

        await self.audit.log_event(
            AuditAction.ROUTE_CANCELLED_DRIVER, actor_id, context=context,
            metadata={"route_id": route_id, "cancelled_bookings": len(bookings),
                      "reversed_payments": reversed_count, "failed_payments": failed_pending + refund_failures},
        )
        return {
            "message": "Route cancelled",
            "route_id": route_id,
            "status": RouteStatus.CANCELLED.value,
            "cancelled_bookings": len(bookings),
            "reversed_payments": reversed_count,
            "failed_payments": failed_pending + refund_failures,
        }

    async def finalize_route(self, route_id: str, actor_id: int, context=None) -> Dict[str, Any]:
        async with self.audit.failures(
            AuditAction.ROUTE_COMPLETED, actor_id, context, {"route_id": route_id},
        ):
            async with unit_of_work(self.session_factory) as uow:
                route = await self._owned_route(uow, actor_id, route_id, for_update=True)
                if route.status != RouteStatus.ACTIVE:
                    raise ConflictError("Only active routes can be finalized", details={"status": route.status.value})
                if await uow.routes.has_outstanding_bookings(route.id):
                    raise ConflictError("Route still has pending bookings")
                route.status = RouteStatus.FINALIZED

        await self.audit.log_event(
            AuditAction.ROUTE_COMPLETED, actor_id, context=context, metadata={"route_id": route_id},
        )
        return {"message": "Route finalized", "route_id": route_id, "status": RouteStatus.FINALIZED.value}

    async def finalize_if_ready(self, uow: UnitOfWork, route_id: int) -> bool:
        """FINALIZE an ACTIVE route with no outstanding bookings, inside the caller's transaction."""
        if await uow.routes.has_outstanding_bookings(route_id):
            return False
        return await uow.routes.finalize_if_active(route_id)

    async def auto_finalize_expired_routes(self) -> List[str]:
        """Finalize every ACTIVE route whose departure (plus grace) has passed and has nothing pending."""
        now = self.clock()
        grace = timedelta(minutes=self.settings.route_finalize_grace_minutes)
        finalized = []

        async with unit_of_work(self.session_factory) as uow:
            for route in await uow.routes.list_active_departed_by(now.date()):
                if route.departure_at + grace > now:
                    continue
                if await self.finalize_if_ready(uow, route.id):
                    finalized.append(route.public_id)

        for route_id in finalized:
            await self.audit.log_event(
                AuditAction.ROUTE_COMPLETED, None, metadata={"route_id": route_id, "auto": True},
            )
        if finalized:
            logger.info("Auto-finalized %d expired routes", len(finalized))
        return finalized
