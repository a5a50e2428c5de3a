"""
Payment Service (Domain Logic).

Owns the Payment aggregate: creation for a confirmed booking, PayPal order
and capture, and reversal. Gateway calls never run inside a database
transaction; state is re-read and re-checked after each provider call.
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
from backend.app.db.unit_of_work import unit_of_work
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking import Booking
from backend.app.models.booking_enums import BookingStatus, PaymentMethod
from backend.app.models.payment import Payment
from backend.app.models.route import Route
from backend.app.services.audit import AuditAction, AuditResult, AuditService
from backend.app.services.idempotency import IdempotencyStore
from backend.app.services.paypal_client import PaymentGateway
from backend.app.services.public_ids import PublicIdPrefix, allocate_public_id

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


def payment_view(payment: Payment, booking: Optional[Booking] = None) -> Dict[str, Any]:
    return {
        "payment_id": payment.public_id,
        "booking_id": booking.public_id if booking else None,
        "amount": payment.amount,
        "currency": payment.currency,
        "method": payment.method.value,
        "status": payment.status.value,
        "gateway_order_id": payment.gateway_order_id,
        "failure_reason": payment.failure_reason,
        "paid_at": payment.paid_at,
        "reversed_at": payment.reversed_at,
    }


def mark_pending_failed(payment: Payment, reason: str) -> bool:
    """FAILED with `reason` if still PENDING. Caller owns the transaction."""
    if payment.status != PaymentStatus.PENDING:
        return False
    payment.status = PaymentStatus.FAILED
    payment.failure_reason = reason
    return True


def route_amount(route: Route) -> float:
    price = route.price_per_seat or 0
    if price <= 0:
        raise ValidationError("Route price must be greater than zero")
    return round(float(price), 2)


class PaymentService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: PaymentGateway,
        idempotency: IdempotencyStore,
        audit: AuditService,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.idempotency = idempotency
        self.audit = audit
        self.settings = settings
        self.clock = clock

    # Creation

    async def create_payment(self, passenger_id: int, booking_id: str, method: PaymentMethod,
                             idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        async with self.audit.failures(
            AuditAction.PAYMENT_INITIATED, passenger_id, context, {"booking_id": booking_id},
        ):
            return await self.idempotency.run(
                "payments:create", passenger_id, idempotency_key,
                lambda: self._create_payment(passenger_id, booking_id, method, context),
            )

    async def _create_payment(self, passenger_id: int, booking_id: str, method: PaymentMethod,
                              context) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            booking = await uow.bookings.get_by_public_id(booking_id)
            if not booking:
                raise NotFoundError("Booking", booking_id)
            if booking.passenger_id != passenger_id:
                raise ForbiddenError("Booking does not belong to you")
            if booking.status != BookingStatus.CONFIRMED:
                raise ConflictError("Booking is not active", details={"status": booking.status.value})
            if booking.payment_method != method:
                raise ValidationError(
                    "Payment method does not match the booking",
                    details={"booking_method": booking.payment_method.value},
                )

            route = await uow.routes.get(booking.route_id)
            amount = route_amount(route)

            if await uow.payments.get_by_booking(booking.id):
                raise ConflictError("Payment already exists for this booking")

            payment = Payment(
                public_id=await allocate_public_id(uow.session, Payment, PublicIdPrefix.PAYMENT),
                booking_id=booking.id,
                amount=amount,
                currency=self.settings.currency,
                method=method,
                status=PaymentStatus.PENDING,
            )
            uow.add(payment)
            try:
                await uow.flush()
            except IntegrityError:
                raise ConflictError("Payment already exists for this booking")

        await self.audit.log_event(
            AuditAction.PAYMENT_INITIATED, passenger_id, context=context,
            metadata={"payment_id": payment.public_id, "booking_id": booking.public_id,
                      "method": method.value, "amount": amount},
        )
        return {"message": "Payment initiated", **payment_view(payment, booking)}

    # Gateway order / capture

    async def create_gateway_order(self, passenger_id: int, payment_id: str,
                                   idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        return await self.idempotency.run(
            f"payments:paypal-order:{payment_id}", passenger_id, idempotency_key,
            lambda: self._create_gateway_order(passenger_id, payment_id, context),
        )

    async def _create_gateway_order(self, passenger_id: int, payment_id: str, context) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            payment = await self._owned_digital_payment(uow, passenger_id, payment_id)
            amount, currency = payment.amount, payment.currency

        try:
            order = await self.gateway.create_order(amount, currency, reference_id=payment_id)
        except GatewayError as exc:
            await self.audit.log_event(
                AuditAction.PAYMENT_FAILED, passenger_id, AuditResult.FAILED, context,
                metadata={"payment_id": payment_id, "step": "create_order", "reason": exc.reason},
            )
            raise

        async with unit_of_work(self.session_factory) as uow:
            payment = await uow.payments.get_by_public_id(payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise ConflictError("Payment is no longer pending")
            payment.gateway_order_id = order.order_id

        await self.audit.log_event(
            AuditAction.PAYMENT_INITIATED, passenger_id, context=context,
            metadata={"payment_id": payment_id, "gateway_order_id": order.order_id},
        )
        return {
            "message": "PayPal order created",
            "payment_id": payment_id,
            "gateway_order_id": order.order_id,
            "approval_url": order.approval_url,
        }

    async def capture_gateway_order(self, passenger_id: int, payment_id: str, gateway_order_id: str,
                                    idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        return await self.idempotency.run(
            f"payments:paypal-capture:{payment_id}", passenger_id, idempotency_key,
            lambda: self._capture_gateway_order(passenger_id, payment_id, gateway_order_id, context),
        )

    async def _capture_gateway_order(self, passenger_id: int, payment_id: str, gateway_order_id: str,
                                     context) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            payment = await self._owned_digital_payment(uow, passenger_id, payment_id)
            if not payment.gateway_order_id or payment.gateway_order_id != gateway_order_id:
                raise ValidationError("Gateway order does not match this payment")

        # The caller's claim of success is never trusted: always ask the provider.
        try:
            capture = await self.gateway.capture_order(gateway_order_id)
        except GatewayError as exc:
            await self.audit.log_event(
                AuditAction.PAYMENT_FAILED, passenger_id, AuditResult.FAILED, context,
                metadata={"payment_id": payment_id, "step": "capture", "reason": exc.reason},
            )
            raise

        if not capture.completed:
            await self.audit.log_event(
                AuditAction.PAYMENT_FAILED, passenger_id, AuditResult.FAILED, context,
                metadata={"payment_id": payment_id, "step": "capture", "gateway_status": capture.status},
            )
            raise ValidationError("Payment was not completed by the provider")

        async with unit_of_work(self.session_factory) as uow:
            payment = await uow.payments.get_by_public_id(payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise ConflictError("Payment is no longer pending")
            payment.status = PaymentStatus.PAID
            payment.paid_at = self.clock()
            payment.gateway_capture_id = capture.capture_id

        await self.audit.log_event(
            AuditAction.PAYMENT_COMPLETED, passenger_id, context=context,
            metadata={"payment_id": payment_id, "gateway_order_id": gateway_order_id,
                      "gateway_capture_id": capture.capture_id},
        )
        return {"message": "Payment captured", "payment_id": payment_id, "status": PaymentStatus.PAID.value}

    async def _owned_digital_payment(self, uow, passenger_id: int, payment_id: str) -> Payment:
        found = await uow.payments.get_with_booking(payment_id)
        if not found or found[1].passenger_id != passenger_id:
            raise NotFoundError("Payment", payment_id)
        payment = found[0]
        if not payment.method.is_digital:
            raise ValidationError("Payment method is not processed by the gateway")
        if payment.status != PaymentStatus.PENDING:
            raise ConflictError("Payment is not pending", details={"status": payment.status.value})
        return payment

    # Reversal

    async def reverse_payment(self, payment_id: str, actor_id: Optional[int] = None,
                              idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        """
        Refund a PAID payment.

        Digital payments are refunded through the stored capture. A gateway
        failure leaves the payment FAILED with the reason and re-raises.
        """
        return await self.idempotency.run(
            f"payments:reverse:{payment_id}", actor_id or SYSTEM_ACTOR, idempotency_key,
            lambda: self._reverse_payment(payment_id, actor_id, context),
        )

    async def _reverse_payment(self, payment_id: str, actor_id: Optional[int], context) -> Dict[str, Any]:
        now = self.clock()
        stale_before = now - timedelta(seconds=self.settings.gateway_claim_ttl_seconds)
        async with unit_of_work(self.session_factory) as uow:
            payment = await uow.payments.get_by_public_id(payment_id)
            if not payment:
                raise NotFoundError("Payment", payment_id)
            if payment.status != PaymentStatus.PAID:
                raise ConflictError("Payment is not paid", details={"status": payment.status.value})
            if not await uow.payments.begin_reversal(payment.id, now, stale_before):
                raise ConflictError("Payment refund is already in progress")
            row_id, method, capture_id = payment.id, payment.method, payment.gateway_capture_id

        if method.is_digital and capture_id:
            try:
                await self.gateway.refund_capture(capture_id)
            except GatewayError as exc:
                async with unit_of_work(self.session_factory) as uow:
                    recorded = await uow.payments.fail_reversal(row_id, now, exc.reason)
                if not recorded:
                    logger.warning("Payment %s changed state during refund; failure not recorded", payment_id)
                logger.warning("Refund failed for payment %s: %s", payment_id, exc.reason)
                await self.audit.log_event(
                    AuditAction.PAYMENT_FAILED, actor_id, AuditResult.FAILED, context,
                    metadata={"payment_id": payment_id, "step": "refund", "reason": exc.reason},
                )
                raise

        async with unit_of_work(self.session_factory) as uow:
            if not await uow.payments.finish_reversal(row_id, now, self.clock()):
                raise ConflictError("Payment changed state during refund")

        await self.audit.log_event(
            AuditAction.PAYMENT_REFUNDED, actor_id, context=context,
            metadata={"payment_id": payment_id, "method": method.value},
        )
        return {"message": "Payment reversed", "payment_id": payment_id, "status": PaymentStatus.REVERSED.value}

    # Reads

    async def list_my_payments(self, passenger_id: int,
                               status: Optional[PaymentStatus] = None) -> List[Dict[str, Any]]:
        async with unit_of_work(self.session_factory) as uow:
            rows = await uow.payments.list_for_passenger(passenger_id, status)
        return [payment_view(payment, booking) for payment, booking in rows]

    async def get_payment(self, passenger_id: int, payment_id: str) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            found = await uow.payments.get_with_booking(payment_id)
        if not found or found[1].passenger_id != passenger_id:
            raise NotFoundError("Payment", payment_id)
        return payment_view(*found)

    async def list_driver_payments(self, driver_user_id: int,
                                   status: Optional[PaymentStatus] = None) -> List[Dict[str, Any]]:
        async with unit_of_work(self.session_factory) as uow:
            driver = await uow.drivers.get_by_user_id(driver_user_id)
            if not driver:
                raise NotFoundError("Driver")
            rows = await uow.payments.list_for_driver(driver.id, status)
        return [payment_view(payment, booking) for payment, booking in rows]

    async def list_payments(self, page: int = 1, limit: int = 20,
                            status: Optional[PaymentStatus] = None) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            rows, total = await uow.payments.page(page, limit, status)
        return {"data": [payment_view(payment, booking) for payment, booking in rows], "total": total}
