"""
Audit trail tests.

Every state-changing operation leaves a FAILED event when it is rejected.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from backend.app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from backend.app.models.audit_log import AuditLog
from backend.app.models.booking_enums import PaymentMethod
from backend.app.services.audit import AuditAction, AuditResult

DRIVER = 10
RIDER = 20
STRANGER = 21


@pytest.fixture
def failed_events(session_factory):
    async def _events(action: str):
        async with session_factory() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.action == action, AuditLog.result == AuditResult.FAILED)
                .order_by(AuditLog.id)
            )
            return list(result.scalars().all())
    return _events


@pytest.fixture
async def route(services, make_driver, make_passenger, new_route):
    await make_driver(DRIVER)
    await make_passenger(RIDER)
    await make_passenger(STRANGER)
    return await services.routes.create_route(DRIVER, new_route(seats=2))


@pytest.fixture
async def booking(services, route):
    return await services.bookings.create_booking(RIDER, route["route_id"], PaymentMethod.CASH)


@pytest.mark.asyncio
async def test_rejected_route_publication_is_audited(services, new_route, failed_events):
    with pytest.raises(NotFoundError):
        await services.routes.create_route(DRIVER, new_route())

    events = await failed_events(AuditAction.ROUTE_CREATED)
    assert len(events) == 1
    assert events[0].user_id == DRIVER
    assert events[0].meta_data["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_rejected_booking_is_audited(services, route, failed_events):
    with pytest.raises(NotFoundError):
        await services.bookings.create_booking(RIDER, "RTE_ZZZZZZZZ", PaymentMethod.CASH)
    with pytest.raises(ValidationError):
        await services.bookings.create_booking(RIDER, route["route_id"], PaymentMethod.CASH, pickup_lat=4.6)

    events = await failed_events(AuditAction.BOOKING_CREATED)
    assert [e.meta_data["route_id"] for e in events] == ["RTE_ZZZZZZZZ", route["route_id"]]


@pytest.mark.asyncio
async def test_successful_booking_leaves_no_failure(services, booking, failed_events):
    assert await failed_events(AuditAction.BOOKING_CREATED) == []


@pytest.mark.asyncio
async def test_rejected_cancellation_is_audited(services, booking, failed_events):
    with pytest.raises(ForbiddenError):
        await services.bookings.cancel_booking(STRANGER, booking["booking_id"])

    events = await failed_events(AuditAction.BOOKING_CANCELLED_PASSENGER)
    assert len(events) == 1
    assert events[0].user_id == STRANGER
    assert events[0].meta_data == {
        "booking_id": booking["booking_id"],
        "error_code": "ERR_PERM_001",
        "reason": "Booking does not belong to you",
    }


@pytest.mark.asyncio
async def test_completion_without_otp_is_audited(services, booking, failed_events):
    with pytest.raises(ValidationError):
        await services.bookings.complete_booking(DRIVER, booking["booking_id"])

    events = await failed_events(AuditAction.BOOKING_COMPLETED)
    assert events[0].meta_data["reason"] == "OTP has not been verified for this booking"


@pytest.mark.asyncio
async def test_early_no_show_is_audited(services, route, booking, clock, failed_events):
    clock.now = datetime.combine(route["departure_date"], route["departure_time"]) + timedelta(minutes=5)

    with pytest.raises(ValidationError):
        await services.bookings.mark_no_show(DRIVER, booking["booking_id"])

    assert len(await failed_events(AuditAction.BOOKING_NO_SHOW)) == 1


@pytest.mark.asyncio
async def test_repeated_route_cancellation_is_audited(services, route, failed_events):
    await services.routes.cancel_route(route["route_id"], DRIVER)
    with pytest.raises(ConflictError):
        await services.routes.cancel_route(route["route_id"], DRIVER)

    events = await failed_events(AuditAction.ROUTE_CANCELLED_DRIVER)
    assert len(events) == 1
    assert events[0].meta_data["error_code"] == "ERR_CONFLICT_001"


@pytest.mark.asyncio
async def test_blocked_finalization_is_audited(services, route, booking, failed_events):
    with pytest.raises(ConflictError):
        await services.routes.finalize_route(route["route_id"], DRIVER)

    events = await failed_events(AuditAction.ROUTE_COMPLETED)
    assert events[0].meta_data["reason"] == "Route still has pending bookings"


@pytest.mark.asyncio
async def test_rejected_payment_is_audited(services, booking, failed_events):
    with pytest.raises(ValidationError):
        await services.payments.create_payment(RIDER, booking["booking_id"], PaymentMethod.PAYPAL)

    events = await failed_events(AuditAction.PAYMENT_INITIATED)
    assert len(events) == 1
    assert events[0].meta_data["booking_id"] == booking["booking_id"]


@pytest.mark.asyncio
async def test_rejected_payout_generation_is_audited(services, failed_events):
    with pytest.raises(ValidationError):
        await services.payouts.generate_payouts("2025-13", actor_id=1)

    events = await failed_events(AuditAction.WITHDRAWAL_REQUESTED)
    assert len(events) == 1
    assert events[0].meta_data["period"] == "2025-13"
