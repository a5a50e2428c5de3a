"""
Booking Service (Domain Logic).

Orchestrates the rider-facing flow: reserve a seat, gate the trip start
with an OTP, complete, cancel with refund resolution, or mark a no-show.
Seat math and stop insertion are delegated to the RouteService inside the
same transaction as the booking write.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import Settings
from backend.app.core.exceptions import (
    ConflictError, ForbiddenError, GatewayError, NotFoundError, ValidationError
)
from backend.app.core.logging_setup import get_logger
from backend.app.core.otp import OtpCipher, generate_otp
from backend.app.db.unit_of_work import UnitOfWork, unit_of_work
from backend.app.domain.billing.payment_service import PaymentService, mark_pending_failed
from backend.app.domain.routes.route_service import RouteService, StopPoint, route_map_view, route_view
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking import Booking
from backend.app.models.booking_enums import BookingStatus, PaymentMethod, RefundOutcome
from backend.app.models.route import Route
from backend.app.models.route_enums import RouteStatus
from backend.app.services.audit import AuditAction, AuditResult, AuditService
from backend.app.services.public_ids import PublicIdPrefix, allocate_public_id

logger = get_logger(__name__)

BOOKING_CANCELLED_REASON = "Booking cancelled"
NO_SHOW_REASON = "No show"


def resolve_pickup(lat: Optional[float], lng: Optional[float], address: Optional[str]) -> Optional[StopPoint]:
    """
    All three pickup fields or none.

    Raises:
        ValidationError: If only some of lat, lng, address are given
    """
    address = (address or "").strip() or None
    provided = [value is not None for value in (lat, lng, address)]
    if not any(provided):
        return None
    if not all(provided):
        raise ValidationError(
            "Pickup requires lat, lng and address together",
            details={"lat": lat is not None, "lng": lng is not None, "address": address is not None},
        )
    return StopPoint(lat=lat, lng=lng, address=address)


def booking_view(booking: Booking, route: Optional[Route] = None, otp: Optional[str] = None) -> Dict[str, Any]:
    return {
        "booking_id": booking.public_id,
        "route_id": route.public_id if route else None,
        "passenger_id": booking.passenger_id,
        "status": booking.status.value,
        "payment_method": booking.payment_method.value,
        "otp_used": booking.otp_used,
        "otp": otp,
        "cancelled_at": booking.cancelled_at,
    }


class BookingService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        routes: RouteService,
        payments: PaymentService,
        otp_cipher: OtpCipher,
        audit: AuditService,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.routes = routes
        self.payments = payments
        self.otp_cipher = otp_cipher
        self.audit = audit
        self.settings = settings
        self.clock = clock

    async def _driver_booking(self, uow: UnitOfWork, driver_user_id: int, booking_id: str):
        driver = await self.routes.require_approved_driver(uow, driver_user_id)
        booking = await uow.bookings.get_by_public_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        route = await uow.routes.get(booking.route_id)
        if route.driver_id != driver.id:
            raise ForbiddenError("Booking is not on your route")
        if booking.status != BookingStatus.CONFIRMED:
            raise ConflictError("Booking is not confirmed", details={"status": booking.status.value})
        return booking, route

    # Reservation

    async def create_booking(
        self,
        passenger_id: int,
        route_id: str,
        method: PaymentMethod,
        pickup_lat: Optional[float] = None,
        pickup_lng: Optional[float] = None,
        pickup_address: Optional[str] = None,
        context=None,
    ) -> Dict[str, Any]:
        """
        Reserve one seat on an ACTIVE route.

        Seat decrement, optional pickup stop and booking insert share one
        transaction. Returns the booking id and the plaintext OTP.
        """
        async with self.audit.failures(
            AuditAction.BOOKING_CREATED, passenger_id, context, {"route_id": route_id},
        ):
            pickup = resolve_pickup(pickup_lat, pickup_lng, pickup_address)

            async with unit_of_work(self.session_factory) as uow:
                profile = await uow.drivers.get_profile(passenger_id)
                if not profile:
                    raise NotFoundError("Passenger profile")
                if profile.is_rating_blocked or profile.rating_average < self.settings.min_rating:
                    raise ForbiddenError("Passenger is blocked by rating")
                if await uow.bookings.has_cash_debt(passenger_id):
                    raise ForbiddenError("Passenger has an outstanding cash debt")

                route = await uow.routes.get_by_public_id(route_id, for_update=True)
                if not route:
                    raise NotFoundError("Route", route_id)
                if route.status != RouteStatus.ACTIVE:
                    raise ConflictError("Route is not active", details={"status": route.status.value})
                if not route.price_per_seat or route.price_per_seat <= 0:
                    raise ValidationError("Route price must be greater than zero")
                if route.departure_at <= self.clock():
                    raise ValidationError("Route has already departed")
                if route.driver_id is not None:
                    driver = await uow.drivers.get(route.driver_id)
                    if driver and driver.user_id == passenger_id:
                        raise ForbiddenError("Drivers cannot book their own route")
                if await uow.bookings.exists_for(route.id, passenger_id):
                    raise ConflictError("Booking already exists for this route")

                await self.routes.reserve_seat(uow, route.id)
                if pickup:
                    await self.routes.insert_stop(uow, route.id, pickup)

                otp = generate_otp()
                booking = Booking(
                    public_id=await allocate_public_id(uow.session, Booking, PublicIdPrefix.BOOKING),
                    route_id=route.id,
                    passenger_id=passenger_id,
                    status=BookingStatus.CONFIRMED,
                    otp=self.otp_cipher.encrypt(otp),
                    otp_used=False,
                    payment_method=method,
                )
                uow.add(booking)
                try:
                    await uow.flush()
                except IntegrityError:
                    raise ConflictError("Booking already exists for this route")

        await self.audit.log_event(
            AuditAction.BOOKING_CREATED, passenger_id, context=context,
            metadata={"booking_id": booking.public_id, "route_id": route_id, "method": method.value},
        )
        return {"message": "Booking created", **booking_view(booking, route, otp)}

    # Trip gate

    async def verify_otp(self, driver_user_id: int, booking_id: str, code: str, context=None) -> Dict[str, Any]:
        """
        Flip otp_used on a match. Reuse and mismatch are audited separately.

        Raises:
            ValidationError: OTP already used or code mismatch
        """
        async with unit_of_work(self.session_factory) as uow:
            booking, _ = await self._driver_booking(uow, driver_user_id, booking_id)
            if booking.otp_used:
                outcome = AuditAction.TRIP_OTP_REUSED
            elif not self.otp_cipher.matches(booking.otp, code):
                outcome = AuditAction.TRIP_OTP_INVALID
            else:
                booking.otp_used = True
                outcome = AuditAction.TRIP_OTP_VALIDATED

        if outcome != AuditAction.TRIP_OTP_VALIDATED:
            await self.audit.log_event(
                outcome, driver_user_id, AuditResult.FAILED, context, metadata={"booking_id": booking_id},
            )
            if outcome == AuditAction.TRIP_OTP_REUSED:
                raise ValidationError("OTP has already been used")
            raise ValidationError("Invalid OTP")

        await self.audit.log_event(outcome, driver_user_id, context=context, metadata={"booking_id": booking_id})
        return {"message": "OTP verified", "booking_id": booking_id, "otp_used": True}

    async def complete_booking(self, driver_user_id: int, booking_id: str, context=None) -> Dict[str, Any]:
        async with self.audit.failures(
            AuditAction.BOOKING_COMPLETED, driver_user_id, context, {"booking_id": booking_id},
        ):
            async with unit_of_work(self.session_factory) as uow:
                booking, route = await self._driver_booking(uow, driver_user_id, booking_id)
                if not booking.otp_used:
                    raise ValidationError("OTP has not been verified for this booking")
                booking.status = BookingStatus.COMPLETED
                route_finalized = await self.routes.finalize_if_ready(uow, route.id)

        await self.audit.log_event(
            AuditAction.BOOKING_COMPLETED, driver_user_id, context=context, metadata={"booking_id": booking_id},
        )
        if route_finalized:
            await self.audit.log_event(
                AuditAction.ROUTE_COMPLETED, driver_user_id, context=context,
                metadata={"route_id": route.public_id, "trigger": "last_booking"},
            )
        return {
            "message": "Booking completed",
            "booking_id": booking_id,
            "status": BookingStatus.COMPLETED.value,
            "route_finalized": route_finalized,
        }

    # Passenger cancellation

    async def cancel_booking(self, passenger_id: int, booking_id: str, context=None) -> Dict[str, Any]:
        """
        Cancel a CONFIRMED booking before departure and release its seat.

        Inside the refund cutoff the payment is left as is (NO_REFUND).
        Otherwise a PAID payment is reversed (a gateway failure leaves it
        FAILED; the cancellation stands) and a PENDING one is failed.
        """
        now = self.clock()
        reverse_payment_id = None

        async with self.audit.failures(
            AuditAction.BOOKING_CANCELLED_PASSENGER, passenger_id, context, {"booking_id": booking_id},
        ):
            async with unit_of_work(self.session_factory) as uow:
                booking = await uow.bookings.get_by_public_id(booking_id)
                if not booking:
                    raise NotFoundError("Booking", booking_id)
                if booking.passenger_id != passenger_id:
                    raise ForbiddenError("Booking does not belong to you")
                if booking.status != BookingStatus.CONFIRMED:
                    raise ConflictError(
                        "Only confirmed bookings can be cancelled", details={"status": booking.status.value}
                    )

                route = await uow.routes.get(booking.route_id)
                minutes_to_departure = (route.departure_at - now).total_seconds() / 60
                if minutes_to_departure <= 0:
                    raise ValidationError("Route has already departed")

                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = now
                await self.routes.release_seat(uow, route.id)

                if minutes_to_departure < self.settings.refund_cutoff_minutes:
                    refund = RefundOutcome.NO_REFUND
                else:
                    refund = RefundOutcome.NOT_REQUIRED
                    payment = await uow.payments.get_by_booking(booking.id)
                    if payment and payment.status == PaymentStatus.PAID:
                        reverse_payment_id = payment.public_id
                    elif payment:
                        mark_pending_failed(payment, BOOKING_CANCELLED_REASON)

        if reverse_payment_id:
            try:
                await self.payments.reverse_payment(reverse_payment_id, actor_id=passenger_id, context=context)
                refund = RefundOutcome.REFUNDED
            except GatewayError as exc:
                refund = RefundOutcome.FAILED
                logger.warning("Booking %s cancelled but refund failed: %s", booking_id, exc.reason)
            except ConflictError:
                refund = RefundOutcome.FAILED
                logger.warning("Booking %s: payment %s changed state before refund", booking_id, reverse_payment_id)

        await self.audit.log_event(
            AuditAction.BOOKING_CANCELLED_PASSENGER, passenger_id, context=context,
            metadata={"booking_id": booking_id, "refund": refund.value},
        )
        return {
            "message": "Booking cancelled",
            "booking_id": booking_id,
            "status": BookingStatus.CANCELLED.value,
            "refund": refund.value,
        }

    # Driver no-show

    async def mark_no_show(self, driver_user_id: int, booking_id: str, context=None) -> Dict[str, Any]:
        """
        NO_SHOW once the grace window past departure has elapsed.

        PAID payments stay PAID for payout. A PENDING payment becomes FAILED,
        which for cash bookings is the passenger's debt marker.
        """
        now = self.clock()
        async with self.audit.failures(
            AuditAction.BOOKING_NO_SHOW, driver_user_id, context, {"booking_id": booking_id},
        ):
            async with unit_of_work(self.session_factory) as uow:
                booking, route = await self._driver_booking(uow, driver_user_id, booking_id)
                grace = timedelta(minutes=self.settings.no_show_grace_minutes)
                if now < route.departure_at + grace:
                    raise ValidationError(
                        f"No-show can only be marked {self.settings.no_show_grace_minutes} minutes after departure"
                    )

                booking.status = BookingStatus.NO_SHOW
                payment = await uow.payments.get_by_booking(booking.id)
                if payment:
                    mark_pending_failed(payment, NO_SHOW_REASON)
                route_finalized = await self.routes.finalize_if_ready(uow, route.id)

        await self.audit.log_event(
            AuditAction.BOOKING_NO_SHOW, driver_user_id, context=context,
            metadata={"booking_id": booking_id, "method": booking.payment_method.value},
        )
        return {
            "message": "Booking marked as no-show",
            "booking_id": booking_id,
            "status": BookingStatus.NO_SHOW.value,
            "route_finalized": route_finalized,
        }

    # Operator

    async def settle_cash_debt(self, booking_id: str, actor_id: int, context=None) -> Dict[str, Any]:
        """Clear the cash debt marker left by a cash no-show or failed cash payment."""
        now = self.clock()
        async with unit_of_work(self.session_factory) as uow:
            booking = await uow.bookings.get_by_public_id(booking_id)
            if not booking:
                raise NotFoundError("Booking", booking_id)
            if booking.payment_method != PaymentMethod.CASH:
                raise ValidationError("Only cash bookings carry a debt")
            if booking.debt_resolved_at is not None:
                raise ConflictError("Cash debt already settled")

            payment = await uow.payments.get_by_booking(booking.id)
            has_debt = booking.status == BookingStatus.NO_SHOW or (
                booking.status != BookingStatus.CANCELLED
                and payment is not None
                and payment.status == PaymentStatus.FAILED
            )
            if not has_debt:
                raise ConflictError("Booking has no outstanding cash debt")
            booking.debt_resolved_at = now

        await self.audit.log_event(
            AuditAction.CASH_DEBT_SETTLED, actor_id, context=context,
            metadata={"booking_id": booking_id, "passenger_id": booking.passenger_id},
        )
        return {"message": "Cash debt settled", "booking_id": booking_id, "debt_resolved_at": now}

    # Reads

    async def list_my_bookings(self, passenger_id: int,
                               status: Optional[BookingStatus] = None) -> List[Dict[str, Any]]:
        async with unit_of_work(self.session_factory) as uow:
            rows = await uow.bookings.list_for_passenger(passenger_id, status)

        views = []
        for booking, route in rows:
            show_otp = booking.status == BookingStatus.CONFIRMED and not booking.otp_used
            views.append(booking_view(booking, route, self.otp_cipher.decrypt(booking.otp) if show_otp else None))
        return views

    async def _own_booking(self, uow: UnitOfWork, passenger_id: int, booking_id: str):
        """The passenger's booking and its route; someone else's booking reads as missing."""
        booking = await uow.bookings.get_by_public_id(booking_id)
        if not booking or booking.passenger_id != passenger_id:
            raise NotFoundError("Booking", booking_id)
        return booking, await uow.routes.get(booking.route_id)

    async def get_booking(self, passenger_id: int, booking_id: str) -> Dict[str, Any]:
        """Booking detail with its route and stops. The OTP is shown while the booking is open."""
        async with unit_of_work(self.session_factory) as uow:
            booking, route = await self._own_booking(uow, passenger_id, booking_id)
            stops = await uow.routes.list_stops(route.id)
            payment = await uow.payments.get_by_booking(booking.id)

        show_otp = booking.status == BookingStatus.CONFIRMED and not booking.otp_used
        return {
            **booking_view(booking, route, self.otp_cipher.decrypt(booking.otp) if show_otp else None),
            "payment_status": payment.status.value if payment else None,
            "route": route_view(route, stops),
        }

    async def get_booking_map(self, passenger_id: int, booking_id: str) -> Dict[str, Any]:
        """
        Stop coordinates of the booked route.

        Raises:
            ForbiddenError: If the booking is no longer CONFIRMED
        """
        async with unit_of_work(self.session_factory) as uow:
            booking, route = await self._own_booking(uow, passenger_id, booking_id)
            if booking.status != BookingStatus.CONFIRMED:
                raise ForbiddenError("Booking is not active", details={"status": booking.status.value})
            stops = await uow.routes.list_stops(route.id)
        return {"booking_id": booking_id, **route_map_view(route, stops)}

    async def list_route_bookings(self, driver_user_id: int, route_id: str) -> List[Dict[str, Any]]:
        async with unit_of_work(self.session_factory) as uow:
            driver = await self.routes.require_approved_driver(uow, driver_user_id)
            route = await uow.routes.get_by_public_id(route_id)
            if not route:
                raise NotFoundError("Route", route_id)
            if route.driver_id != driver.id:
                raise ForbiddenError("Route does not belong to you")
            bookings = await uow.bookings.list_for_route(route.id)
        return [booking_view(booking, route) for booking in bookings]
