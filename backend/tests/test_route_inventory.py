"""
Route inventory tests.

Publication gates, stop insertion, cancellation sweep and finalization.
"""

from datetime import timedelta

import pytest

from backend.app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from backend.app.domain.routes.route_service import StopPoint
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking import Booking
from backend.app.models.booking_enums import BookingStatus, PaymentMethod
from backend.app.models.enums import DriverStatus
from backend.app.models.payment import Payment
from backend.app.models.route import Route
from backend.app.models.route_enums import RouteStatus

DRIVER = 10
RIDER_A = 20
RIDER_B = 21


async def pay_with_paypal(services, passenger_id, booking_id):
    created = await services.payments.create_payment(passenger_id, booking_id, PaymentMethod.PAYPAL)
    order = await services.payments.create_gateway_order(passenger_id, created["payment_id"])
    await services.payments.capture_gateway_order(passenger_id, created["payment_id"], order["gateway_order_id"])
    return created["payment_id"]


@pytest.mark.asyncio
async def test_create_route_numbers_stops(services, make_driver, new_route):
    await make_driver(DRIVER, seats=4)

    route = await services.routes.create_route(DRIVER, new_route(seats=3))

    assert route["status"] == "ACTIVE"
    assert route["seats_total"] == 3
    assert route["seats_available"] == 3
    assert [s["order"] for s in route["stops"]] == [1, 2]
    assert route["route_id"].startswith("RTE_")


@pytest.mark.asyncio
async def test_create_route_rejects_seats_above_vehicle_capacity(services, make_driver, new_route):
    await make_driver(DRIVER, seats=2)

    with pytest.raises(ValidationError):
        await services.routes.create_route(DRIVER, new_route(seats=3))


@pytest.mark.asyncio
async def test_create_route_requires_active_vehicle(services, make_driver, new_route):
    await make_driver(DRIVER, with_vehicle=False)

    with pytest.raises(NotFoundError):
        await services.routes.create_route(DRIVER, new_route())


@pytest.mark.asyncio
async def test_create_route_gates_driver(services, make_driver, new_route):
    await make_driver(DRIVER, status=DriverStatus.PENDING)
    await make_driver(DRIVER + 1, rating=2.5)

    with pytest.raises(ForbiddenError):
        await services.routes.create_route(DRIVER, new_route())
    with pytest.raises(ForbiddenError):
        await services.routes.create_route(DRIVER + 1, new_route())
    with pytest.raises(NotFoundError):
        await services.routes.create_route(999, new_route())


@pytest.mark.asyncio
async def test_create_route_rejects_past_departure(services, make_driver, new_route, clock):
    await make_driver(DRIVER)

    with pytest.raises(ValidationError):
        await services.routes.create_route(DRIVER, new_route(departure_date=clock.now.date() - timedelta(days=1)))


@pytest.mark.asyncio
async def test_add_stop_inserts_at_cheapest_position(services, make_driver, new_route):
    await make_driver(DRIVER)
    route = await services.routes.create_route(DRIVER, new_route())

    updated = await services.routes.add_stop(
        DRIVER, route["route_id"], StopPoint(lat=4.65, lng=-74.065, address="Midway")
    )

    assert [(s["address"], s["order"]) for s in updated["stops"]] == [
        ("Campus gate", 1), ("Midway", 2), ("Downtown terminal", 3)
    ]


@pytest.mark.asyncio
async def test_add_stop_rejects_foreign_route(services, make_driver, new_route):
    await make_driver(DRIVER)
    await make_driver(DRIVER + 1)
    route = await services.routes.create_route(DRIVER, new_route())

    with pytest.raises(ForbiddenError):
        await services.routes.add_stop(DRIVER + 1, route["route_id"], StopPoint(4.6, -74.0, "Elsewhere"))


@pytest.mark.asyncio
async def test_cancel_route_sweeps_bookings_and_payments(
    services, make_driver, make_passenger, new_route, gateway, fetch
):
    await make_driver(DRIVER)
    await make_passenger(RIDER_A)
    await make_passenger(RIDER_B)
    route = await services.routes.create_route(DRIVER, new_route(seats=3))

    paid = await services.bookings.create_booking(RIDER_A, route["route_id"], PaymentMethod.PAYPAL)
    paid_payment = await pay_with_paypal(services, RIDER_A, paid["booking_id"])
    cash = await services.bookings.create_booking(RIDER_B, route["route_id"], PaymentMethod.CASH)
    cash_payment = await services.payments.create_payment(RIDER_B, cash["booking_id"], PaymentMethod.CASH)

    result = await services.routes.cancel_route(route["route_id"], DRIVER, "Car broke down")

    assert result["cancelled_bookings"] == 2
    assert result["reversed_payments"] == 1
    assert result["failed_payments"] == 1
    assert gateway.count("refund_capture") == 1

    stored = await fetch(Route, route["route_id"])
    assert stored.status == RouteStatus.CANCELLED
    assert stored.seats_available == stored.seats_total
    assert stored.message == "Car broke down"
    assert (await fetch(Booking, paid["booking_id"])).status == BookingStatus.CANCELLED
    assert (await fetch(Payment, paid_payment)).status == PaymentStatus.REVERSED
    failed = await fetch(Payment, cash_payment["payment_id"])
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Route cancelled"


@pytest.mark.asyncio
async def test_cancel_route_survives_refund_failure(
    services, make_driver, make_passenger, new_route, gateway, fetch
):
    await make_driver(DRIVER)
    await make_passenger(RIDER_A)
    route = await services.routes.create_route(DRIVER, new_route())
    booking = await services.bookings.create_booking(RIDER_A, route["route_id"], PaymentMethod.PAYPAL)
    payment_id = await pay_with_paypal(services, RIDER_A, booking["booking_id"])

    gateway.fail("refund_capture", "refund window closed")
    result = await services.routes.cancel_route(route["route_id"], DRIVER)

    assert result["reversed_payments"] == 0
    assert result["failed_payments"] == 1
    assert (await fetch(Route, route["route_id"])).status == RouteStatus.CANCELLED
    payment = await fetch(Payment, payment_id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "refund window closed"


@pytest.mark.asyncio
async def test_cancel_route_twice_conflicts(services, make_driver, new_route):
    await make_driver(DRIVER)
    route = await services.routes.create_route(DRIVER, new_route())
    await services.routes.cancel_route(route["route_id"], DRIVER)

    with pytest.raises(ConflictError):
        await services.routes.cancel_route(route["route_id"], DRIVER)


@pytest.mark.asyncio
async def test_finalize_route_blocked_by_confirmed_booking(services, make_driver, make_passenger, new_route):
    await make_driver(DRIVER)
    await make_passenger(RIDER_A)
    route = await services.routes.create_route(DRIVER, new_route())
    await services.bookings.create_booking(RIDER_A, route["route_id"], PaymentMethod.CASH)

    with pytest.raises(ConflictError):
        await services.routes.finalize_route(route["route_id"], DRIVER)


@pytest.mark.asyncio
async def test_finalize_empty_route(services, make_driver, new_route, fetch):
    await make_driver(DRIVER)
    route = await services.routes.create_route(DRIVER, new_route())

    result = await services.routes.finalize_route(route["route_id"], DRIVER)

    assert result["status"] == "FINALIZED"
    assert (await fetch(Route, route["route_id"])).status == RouteStatus.FINALIZED


@pytest.mark.asyncio
async def test_auto_finalize_only_departed_routes_without_pending_bookings(
    services, make_driver, make_passenger, new_route, clock, fetch
):
    await make_driver(DRIVER)
    await make_passenger(RIDER_A)
    empty = await services.routes.create_route(DRIVER, new_route())
    booked = await services.routes.create_route(DRIVER, new_route())
    later = await services.routes.create_route(DRIVER, new_route(departure_date=clock.now.date() + timedelta(days=5)))
    await services.bookings.create_booking(RIDER_A, booked["route_id"], PaymentMethod.CASH)

    assert await services.routes.auto_finalize_expired_routes() == []

    clock.advance(days=1, hours=1)
    finalized = await services.routes.auto_finalize_expired_routes()

    assert finalized == [empty["route_id"]]
    assert (await fetch(Route, booked["route_id"])).status == RouteStatus.ACTIVE
    assert (await fetch(Route, later["route_id"])).status == RouteStatus.ACTIVE
