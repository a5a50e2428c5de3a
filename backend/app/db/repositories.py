"""
Repositories bound to a single transaction.

All seat-count and payout-claim mutations are conditional UPDATEs, so the
database serializes competing writers and the loser sees a zero rowcount.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, exists, and_, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ConflictError
from backend.app.models.billing_enums import PaymentStatus, PayoutStatus
from backend.app.models.booking import Booking
from backend.app.models.booking_enums import BookingStatus, PaymentMethod
from backend.app.models.driver import Driver, Vehicle, UserProfile
from backend.app.models.payment import Payment
from backend.app.models.payout import Payout
from backend.app.models.route import Route, RouteStop
from backend.app.models.route_enums import Campus, RouteStatus


def _outstanding_booking_clause():
    """
    CONFIRMED, or CANCELLED with its refund still in flight.

    A cancellation inside the refund cutoff is settled when it commits, even
    if its payment stays PENDING.
    """
    refund_in_flight = exists().where(
        Payment.booking_id == Booking.id,
        Payment.status == PaymentStatus.PAID,
        Payment.processing_since.isnot(None),
    )
    return or_(
        Booking.status == BookingStatus.CONFIRMED,
        and_(Booking.status == BookingStatus.CANCELLED, refund_in_flight),
    )


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, driver_id: int) -> Optional[Driver]:
        return await self.session.get(Driver, driver_id)

    async def get_by_user_id(self, user_id: int) -> Optional[Driver]:
        result = await self.session.execute(select(Driver).where(Driver.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_profile(self, user_id: int) -> Optional[UserProfile]:
        result = await self.session.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_active_vehicle(self, driver_id: int) -> Optional[Vehicle]:
        result = await self.session.execute(
            select(Vehicle)
            .where(Vehicle.driver_id == driver_id, Vehicle.is_active.is_(True))
            .order_by(Vehicle.seats.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class RouteRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, route_id: int) -> Optional[Route]:
        return await self.session.get(Route, route_id)

    async def get_by_public_id(self, public_id: str, for_update: bool = False) -> Optional[Route]:
        stmt = select(Route).where(Route.public_id == public_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reserve_seat(self, route_id: int) -> None:
        """
        Decrement seats_available by one.

        Raises:
            ConflictError: If the route is not ACTIVE or has no seat left
        """
        result = await self.session.execute(
            update(Route)
            .where(
                Route.id == route_id,
                Route.status == RouteStatus.ACTIVE,
                Route.seats_available > 0,
            )
            .values(seats_available=Route.seats_available - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        status = await self.session.scalar(select(Route.status).where(Route.id == route_id))
        if status != RouteStatus.ACTIVE:
            raise ConflictError("Route is not active", details={"status": status.value if status else None})
        raise ConflictError("Route is full")

    async def release_seat(self, route_id: int) -> bool:
        """Increment seats_available by one, bounded by seats_total."""
        result = await self.session.execute(
            update(Route)
            .where(Route.id == route_id, Route.seats_available < Route.seats_total)
            .values(seats_available=Route.seats_available + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def search_active(self, seats: int, from_date: date, origin: Optional[Campus] = None,
                            destination: Optional[str] = None,
                            departure_date: Optional[date] = None) -> List[Route]:
        """ACTIVE routes with at least `seats` free, soonest departure first."""
        stmt = select(Route).where(
            Route.status == RouteStatus.ACTIVE,
            Route.seats_available >= seats,
            Route.departure_date >= from_date,
        )
        if origin:
            stmt = stmt.where(Route.origin == origin)
        if destination:
            stmt = stmt.where(Route.destination.ilike(f"%{destination}%"))
        if departure_date:
            stmt = stmt.where(Route.departure_date == departure_date)
        result = await self.session.execute(
            stmt.order_by(Route.departure_date, Route.departure_time, Route.id)
        )
        return list(result.scalars().all())

    async def page_for_driver(self, driver_id: int, status: Optional[RouteStatus],
                              limit: int, offset: int) -> Tuple[List[Route], int]:
        """Without a status filter, cancelled routes are left out."""
        condition = Route.driver_id == driver_id
        if status:
            condition = and_(condition, Route.status == status)
        else:
            condition = and_(condition, Route.status != RouteStatus.CANCELLED)
        total = (await self.session.execute(select(func.count(Route.id)).where(condition))).scalar_one()
        result = await self.session.execute(
            select(Route)
            .where(condition)
            .order_by(Route.departure_date.desc(), Route.departure_time.desc(), Route.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_stops(self, route_id: int) -> List[RouteStop]:
        result = await self.session.execute(
            select(RouteStop).where(RouteStop.route_id == route_id).order_by(RouteStop.order)
        )
        return list(result.scalars().all())

    async def list_stops_for_routes(self, route_ids: Sequence[int]) -> Dict[int, List[RouteStop]]:
        grouped: Dict[int, List[RouteStop]] = {route_id: [] for route_id in route_ids}
        if not route_ids:
            return grouped
        result = await self.session.execute(
            select(RouteStop)
            .where(RouteStop.route_id.in_(route_ids))
            .order_by(RouteStop.route_id, RouteStop.order)
        )
        for stop in result.scalars().all():
            grouped[stop.route_id].append(stop)
        return grouped

    async def shift_stops(self, stops: Sequence[RouteStop]) -> None:
        """
        Move each stop one slot down.

        Updated from the highest order first so (route_id, order) stays
        unique after every statement.
        """
        for stop in sorted(stops, key=lambda s: s.order, reverse=True):
            stop.order += 1
            await self.session.flush()

    async def has_outstanding_bookings(self, route_id: int) -> bool:
        await self.session.flush()
        result = await self.session.execute(
            select(func.count(Booking.id)).where(
                Booking.route_id == route_id,
                _outstanding_booking_clause(),
            )
        )
        return result.scalar_one() > 0

    async def list_active_departed_by(self, day: date) -> List[Route]:
        result = await self.session.execute(
            select(Route).where(
                Route.status == RouteStatus.ACTIVE,
                Route.departure_date <= day,
            )
        )
        return list(result.scalars().all())

    async def finalize_if_active(self, route_id: int) -> bool:
        result = await self.session.execute(
            update(Route)
            .where(Route.id == route_id, Route.status == RouteStatus.ACTIVE)
            .values(status=RouteStatus.FINALIZED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_public_id(self, public_id: str) -> Optional[Booking]:
        result = await self.session.execute(select(Booking).where(Booking.public_id == public_id))
        return result.scalar_one_or_none()

    async def exists_for(self, route_id: int, passenger_id: int) -> bool:
        result = await self.session.execute(
            select(Booking.id).where(Booking.route_id == route_id, Booking.passenger_id == passenger_id)
        )
        return result.first() is not None

    async def list_for_route(self, route_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        stmt = select(Booking).where(Booking.route_id == route_id).order_by(Booking.id)
        if status:
            stmt = stmt.where(Booking.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_passenger(self, passenger_id: int,
                                 status: Optional[BookingStatus] = None) -> List[Tuple[Booking, Route]]:
        stmt = (
            select(Booking, Route)
            .join(Route, Route.id == Booking.route_id)
            .where(Booking.passenger_id == passenger_id)
            .order_by(Booking.id.desc())
        )
        if status:
            stmt = stmt.where(Booking.status == status)
        result = await self.session.execute(stmt)
        return [(row.Booking, row.Route) for row in result.all()]

    async def has_cash_debt(self, passenger_id: int) -> bool:
        """Unresolved cash booking that ended as NO_SHOW, or was not cancelled and has a FAILED payment."""
        failed_payment = exists().where(
            Payment.booking_id == Booking.id,
            Payment.status == PaymentStatus.FAILED,
        )
        result = await self.session.execute(
            select(Booking.id).where(
                Booking.passenger_id == passenger_id,
                Booking.payment_method == PaymentMethod.CASH,
                Booking.debt_resolved_at.is_(None),
                or_(
                    Booking.status == BookingStatus.NO_SHOW,
                    and_(Booking.status != BookingStatus.CANCELLED, failed_payment),
                ),
            ).limit(1)
        )
        return result.first() is not None


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_public_id(self, public_id: str) -> Optional[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.public_id == public_id))
        return result.scalar_one_or_none()

    async def get_by_booking(self, booking_id: int) -> Optional[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.booking_id == booking_id))
        return result.scalar_one_or_none()

    async def get_with_booking(self, public_id: str) -> Optional[Tuple[Payment, Booking]]:
        result = await self.session.execute(
            select(Payment, Booking)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(Payment.public_id == public_id)
        )
        row = result.first()
        return (row.Payment, row.Booking) if row else None

    async def list_for_bookings(self, booking_ids: Sequence[int]) -> List[Payment]:
        if not booking_ids:
            return []
        result = await self.session.execute(
            select(Payment).where(Payment.booking_id.in_(booking_ids)).order_by(Payment.id)
        )
        return list(result.scalars().all())

    async def list_for_passenger(self, passenger_id: int,
                                 status: Optional[PaymentStatus] = None) -> List[Tuple[Payment, Booking]]:
        stmt = (
            select(Payment, Booking)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(Booking.passenger_id == passenger_id)
            .order_by(Payment.id.desc())
        )
        if status:
            stmt = stmt.where(Payment.status == status)
        result = await self.session.execute(stmt)
        return [(row.Payment, row.Booking) for row in result.all()]

    async def list_for_driver(self, driver_id: int,
                              status: Optional[PaymentStatus] = None) -> List[Tuple[Payment, Booking]]:
        stmt = (
            select(Payment, Booking)
            .join(Booking, Booking.id == Payment.booking_id)
            .join(Route, Route.id == Booking.route_id)
            .where(Route.driver_id == driver_id)
            .order_by(Payment.id.desc())
        )
        if status:
            stmt = stmt.where(Payment.status == status)
        result = await self.session.execute(stmt)
        return [(row.Payment, row.Booking) for row in result.all()]

    async def page(self, page: int, limit: int,
                   status: Optional[PaymentStatus] = None) -> Tuple[List[Tuple[Payment, Booking]], int]:
        base = select(Payment, Booking).join(Booking, Booking.id == Payment.booking_id)
        count_stmt = select(func.count(Payment.id))
        if status:
            base = base.where(Payment.status == status)
            count_stmt = count_stmt.where(Payment.status == status)
        total = (await self.session.execute(count_stmt)).scalar_one()
        result = await self.session.execute(
            base.order_by(Payment.id.desc()).offset((page - 1) * limit).limit(limit)
        )
        return [(row.Payment, row.Booking) for row in result.all()], total

    async def list_settled_unclaimed(self, start: datetime, end: datetime) -> List[Tuple[Payment, Optional[int]]]:
        """PAID payments with no payout in [start, end), with the route's driver id (may be None)."""
        result = await self.session.execute(
            select(Payment, Route.driver_id)
            .join(Booking, Booking.id == Payment.booking_id)
            .join(Route, Route.id == Booking.route_id)
            .where(
                Payment.status == PaymentStatus.PAID,
                Payment.payout_id.is_(None),
                Payment.paid_at >= start,
                Payment.paid_at < end,
            )
            .order_by(Payment.id)
        )
        return [(row.Payment, row.driver_id) for row in result.all()]

    async def claim(self, payment_ids: Sequence[int], payout_id: int) -> int:
        """Stamp payout_id on still-unclaimed PAID payments. Returns rows claimed."""
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id.in_(payment_ids),
                Payment.payout_id.is_(None),
                Payment.status == PaymentStatus.PAID,
            )
            .values(payout_id=payout_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def begin_reversal(self, payment_id: int, now: datetime, stale_before: datetime) -> bool:
        """
        Mark a PAID payment as having a refund in flight.

        Only one caller wins; a marker older than `stale_before` is taken over.
        """
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PAID,
                or_(Payment.processing_since.is_(None), Payment.processing_since < stale_before),
            )
            .values(processing_since=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish_reversal(self, payment_id: int, claimed_at: datetime, now: datetime) -> bool:
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PAID,
                Payment.processing_since == claimed_at,
            )
            .values(status=PaymentStatus.REVERSED, reversed_at=now, processing_since=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def fail_reversal(self, payment_id: int, claimed_at: datetime, reason: str) -> bool:
        """FAILED only while this caller still holds the refund marker."""
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PAID,
                Payment.processing_since == claimed_at,
            )
            .values(status=PaymentStatus.FAILED, failure_reason=reason[:500], processing_since=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PayoutRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_public_id(self, public_id: str) -> Optional[Payout]:
        result = await self.session.execute(select(Payout).where(Payout.public_id == public_id))
        return result.scalar_one_or_none()

    async def get_for_driver_period(self, driver_id: int, period: str) -> Optional[Payout]:
        result = await self.session.execute(
            select(Payout).where(Payout.driver_id == driver_id, Payout.period == period)
        )
        return result.scalar_one_or_none()

    async def list_for_driver(self, driver_id: int, status: Optional[PayoutStatus] = None) -> List[Payout]:
        stmt = select(Payout).where(Payout.driver_id == driver_id).order_by(Payout.id.desc())
        if status:
            stmt = stmt.where(Payout.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def page(self, page: int, limit: int, status: Optional[PayoutStatus] = None,
                   period: Optional[str] = None) -> Tuple[List[Payout], int]:
        stmt = select(Payout)
        count_stmt = select(func.count(Payout.id))
        if status:
            stmt = stmt.where(Payout.status == status)
            count_stmt = count_stmt.where(Payout.status == status)
        if period:
            stmt = stmt.where(Payout.period == period)
            count_stmt = count_stmt.where(Payout.period == period)
        total = (await self.session.execute(count_stmt)).scalar_one()
        result = await self.session.execute(
            stmt.order_by(Payout.id.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def top_up(self, payout: Payout, amount: float) -> bool:
        """Add to a PENDING payout that is not being sent and still holds the amount read."""
        result = await self.session.execute(
            update(Payout)
            .where(
                Payout.id == payout.id,
                Payout.status == PayoutStatus.PENDING,
                Payout.processing_since.is_(None),
                Payout.amount == payout.amount,
            )
            .values(amount=round(payout.amount + amount, 2))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def begin_execution(self, payout_id: int, now: datetime, stale_before: datetime) -> bool:
        """Mark a PENDING payout as in flight. Only one caller wins."""
        result = await self.session.execute(
            update(Payout)
            .where(
                Payout.id == payout_id,
                Payout.status == PayoutStatus.PENDING,
                or_(Payout.processing_since.is_(None), Payout.processing_since < stale_before),
            )
            .values(processing_since=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish_execution(self, payout_id: int, claimed_at: datetime, now: datetime, batch_id: str) -> bool:
        result = await self.session.execute(
            update(Payout)
            .where(
                Payout.id == payout_id,
                Payout.status == PayoutStatus.PENDING,
                Payout.processing_since == claimed_at,
            )
            .values(status=PayoutStatus.PAID, paid_at=now, gateway_batch_id=batch_id,
                    last_error=None, processing_since=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def fail_execution(self, payout_id: int, claimed_at: datetime, reason: str) -> bool:
        result = await self.session.execute(
            update(Payout)
            .where(
                Payout.id == payout_id,
                Payout.status == PayoutStatus.PENDING,
                Payout.processing_since == claimed_at,
            )
            .values(status=PayoutStatus.FAILED, attempts=Payout.attempts + 1,
                    last_error=reason[:500], processing_since=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
