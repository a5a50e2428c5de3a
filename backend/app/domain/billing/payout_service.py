"""
Payout Service (Domain Logic).

Monthly settlement: PAID payments with no payout are grouped per driver
(through Booking -> Route) and claimed by one Payout per (driver, period).
Execution sends a single-item PayPal batch. Gateway calls run outside any
database transaction.
"""

import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import Settings
from backend.app.core.exceptions import ConflictError, GatewayError, NotFoundError, ValidationError
from backend.app.core.logging_setup import get_logger
from backend.app.db.unit_of_work import unit_of_work
from backend.app.domain.billing.payment_service import SYSTEM_ACTOR
from backend.app.models.billing_enums import PayoutStatus
from backend.app.models.payout import Payout
from backend.app.services.audit import AuditAction, AuditResult, AuditService
from backend.app.services.idempotency import IdempotencyStore
from backend.app.services.paypal_client import PAYOUT_BATCH_SUCCESS, PaymentGateway
from backend.app.services.public_ids import PublicIdPrefix, allocate_public_id

logger = get_logger(__name__)

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DEFAULT_FAILURE_REASON = "Marked as failed by admin"


def period_bounds(period: str) -> Tuple[datetime, datetime]:
    """
    [start, end) of a YYYY-MM calendar month.

    Raises:
        ValidationError: If the period is not YYYY-MM
    """
    if not period or not PERIOD_PATTERN.match(period):
        raise ValidationError("Period must use the YYYY-MM format", details={"period": period})
    year, month = int(period[:4]), int(period[5:])
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def payout_view(payout: Payout) -> Dict[str, Any]:
    return {
        "payout_id": payout.public_id,
        "driver_id": payout.driver_id,
        "period": payout.period,
        "amount": payout.amount,
        "status": payout.status.value,
        "gateway_batch_id": payout.gateway_batch_id,
        "attempts": payout.attempts,
        "last_error": payout.last_error,
        "paid_at": payout.paid_at,
    }


class PayoutService:
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

    # Aggregation

    async def generate_payouts(self, period: str, actor_id: Optional[int] = None,
                               idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        async with self.audit.failures(AuditAction.WITHDRAWAL_REQUESTED, actor_id, context, {"period": period}):
            period_bounds(period)
            return await self.idempotency.run(
                f"payouts:generate:{period}", actor_id or SYSTEM_ACTOR, idempotency_key,
                lambda: self._generate_payouts(period, actor_id, context),
            )

    async def _generate_payouts(self, period: str, actor_id: Optional[int], context) -> Dict[str, Any]:
        start, end = period_bounds(period)

        async with unit_of_work(self.session_factory) as uow:
            rows = await uow.payments.list_settled_unclaimed(start, end)

        groups: Dict[int, List] = defaultdict(list)
        unassigned = 0
        for payment, driver_id in rows:
            if driver_id is None:
                unassigned += 1
                continue
            groups[driver_id].append(payment)
        if unassigned:
            logger.warning("Period %s: %d settled payments have no driver and stay unclaimed", period, unassigned)

        created, skipped = [], []
        for driver_id, payments in groups.items():
            try:
                payout = await self._claim_group(driver_id, period, payments)
            except ConflictError as exc:
                logger.warning("Period %s: driver %s group skipped: %s", period, driver_id, exc.message)
                skipped.append(driver_id)
                continue
            if payout is None:
                skipped.append(driver_id)
                continue
            created.append(payout_view(payout))

        await self.audit.log_event(
            AuditAction.WITHDRAWAL_REQUESTED, actor_id, context=context,
            metadata={"period": period, "payouts": len(created), "skipped_drivers": len(skipped),
                      "unassigned_payments": unassigned},
        )
        return {"message": "Payouts generated", "period": period, "payouts": created}

    async def _claim_group(self, driver_id: int, period: str, payments: List) -> Optional[Payout]:
        """
        Create (or top up a PENDING) payout for one driver and claim its payments.

        Returns None when the (driver, period) payout is already terminal.
        Raises ConflictError, rolling the group back, if any payment was
        claimed concurrently.
        """
        amount = round(sum(p.amount for p in payments), 2)

        async with unit_of_work(self.session_factory) as uow:
            payout = await uow.payouts.get_for_driver_period(driver_id, period)
            if payout and payout.status != PayoutStatus.PENDING:
                logger.info(
                    "Driver %s already has a %s payout for %s; %d payments left unclaimed",
                    driver_id, payout.status.value, period, len(payments),
                )
                return None

            if payout:
                if not await uow.payouts.top_up(payout, amount):
                    raise ConflictError("Payout changed while being topped up")
                await uow.session.refresh(payout)
            else:
                payout = Payout(
                    public_id=await allocate_public_id(uow.session, Payout, PublicIdPrefix.PAYOUT),
                    driver_id=driver_id,
                    period=period,
                    amount=amount,
                    status=PayoutStatus.PENDING,
                    attempts=0,
                )
                uow.add(payout)
            try:
                await uow.flush()
            except IntegrityError:
                raise ConflictError("Payout already exists for this driver and period")

            claimed = await uow.payments.claim([p.id for p in payments], payout.id)
            if claimed != len(payments):
                raise ConflictError(
                    "Payments were claimed concurrently",
                    details={"expected": len(payments), "claimed": claimed},
                )
        return payout

    # Execution

    async def execute_paypal_payout(self, payout_id: str, actor_id: Optional[int] = None,
                                    idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        return await self.idempotency.run(
            f"payouts:paypal:{payout_id}", actor_id or SYSTEM_ACTOR, idempotency_key,
            lambda: self._execute_paypal_payout(payout_id, actor_id, context),
        )

    async def _execute_paypal_payout(self, payout_id: str, actor_id: Optional[int], context) -> Dict[str, Any]:
        now = self.clock()
        stale_before = now - timedelta(seconds=self.settings.gateway_claim_ttl_seconds)
        async with unit_of_work(self.session_factory) as uow:
            payout = await uow.payouts.get_by_public_id(payout_id)
            if not payout:
                raise NotFoundError("Payout", payout_id)
            if payout.status != PayoutStatus.PENDING:
                raise ConflictError("Only pending payouts can be executed", details={"status": payout.status.value})
            if payout.amount < self.settings.payout_min_amount:
                raise ValidationError(
                    "Payout amount is below the minimum",
                    details={"amount": payout.amount, "minimum": self.settings.payout_min_amount},
                )
            driver = await uow.drivers.get(payout.driver_id)
            email = (driver.paypal_email or "").strip() if driver else ""
            if not EMAIL_PATTERN.match(email):
                raise ValidationError("Driver has no valid PayPal email")
            if not await uow.payouts.begin_execution(payout.id, now, stale_before):
                raise ConflictError("Payout is already being sent")
            # Amount as frozen by the claim; a concurrent top-up may have landed before it.
            await uow.session.refresh(payout)
            row_id, amount, period = payout.id, payout.amount, payout.period

        sender_batch_id = f"payout-{payout_id}-{int(now.timestamp())}"
        try:
            batch = await self.gateway.create_payout(
                sender_batch_id=sender_batch_id,
                receiver_email=email,
                amount=amount,
                currency=self.settings.currency,
                sender_item_id=payout_id,
                note=f"Carpool earnings {period}",
            )
            if batch.batch_status != PAYOUT_BATCH_SUCCESS:
                raise GatewayError(f"Payout batch status {batch.batch_status}", operation="create_payout")
        except GatewayError as exc:
            await self._record_failure(payout_id, row_id, now, exc.reason)
            await self.audit.log_event(
                AuditAction.WITHDRAWAL_FAILED, actor_id, AuditResult.FAILED, context,
                metadata={"payout_id": payout_id, "reason": exc.reason},
            )
            raise

        async with unit_of_work(self.session_factory) as uow:
            if not await uow.payouts.finish_execution(row_id, now, self.clock(), batch.batch_id):
                raise ConflictError("Payout changed state while being sent")
            payout = await uow.payouts.get_by_public_id(payout_id)

        await self.audit.log_event(
            AuditAction.WITHDRAWAL_COMPLETED, actor_id, context=context,
            metadata={"payout_id": payout_id, "gateway_batch_id": batch.batch_id, "amount": amount},
        )
        return {"message": "Payout sent", **payout_view(payout)}

    async def _record_failure(self, payout_id: str, row_id: int, claimed_at: datetime, reason: str) -> None:
        async with unit_of_work(self.session_factory) as uow:
            recorded = await uow.payouts.fail_execution(row_id, claimed_at, reason)
        if not recorded:
            logger.warning("Payout %s changed state while being sent; failure not recorded", payout_id)
        logger.warning("Payout %s failed: %s", payout_id, reason)

    async def fail_payout(self, payout_id: str, reason: Optional[str] = None, actor_id: Optional[int] = None,
                          idempotency_key: Optional[str] = None, context=None) -> Dict[str, Any]:
        return await self.idempotency.run(
            f"payouts:fail:{payout_id}", actor_id or SYSTEM_ACTOR, idempotency_key,
            lambda: self._fail_payout(payout_id, reason, actor_id, context),
        )

    async def _fail_payout(self, payout_id: str, reason: Optional[str], actor_id: Optional[int],
                           context) -> Dict[str, Any]:
        reason = (reason or "").strip() or DEFAULT_FAILURE_REASON
        async with unit_of_work(self.session_factory) as uow:
            payout = await uow.payouts.get_by_public_id(payout_id)
            if not payout:
                raise NotFoundError("Payout", payout_id)
            previous = payout.status
            payout.status = PayoutStatus.FAILED
            payout.last_error = reason[:500]
            payout.attempts += 1
            payout.processing_since = None

        await self.audit.log_event(
            AuditAction.WITHDRAWAL_FAILED, actor_id, context=context,
            metadata={"payout_id": payout_id, "previous_status": previous.value, "reason": reason},
        )
        return {"message": "Payout marked as failed", **payout_view(payout)}

    # Reads

    async def list_driver_payouts(self, driver_user_id: int,
                                  status: Optional[PayoutStatus] = None) -> List[Dict[str, Any]]:
        async with unit_of_work(self.session_factory) as uow:
            driver = await uow.drivers.get_by_user_id(driver_user_id)
            if not driver:
                raise NotFoundError("Driver")
            payouts = await uow.payouts.list_for_driver(driver.id, status)
        return [payout_view(p) for p in payouts]

    async def get_driver_payout(self, driver_user_id: int, payout_id: str) -> Dict[str, Any]:
        async with unit_of_work(self.session_factory) as uow:
            driver = await uow.drivers.get_by_user_id(driver_user_id)
            payout = await uow.payouts.get_by_public_id(payout_id)
        if not driver or not payout or payout.driver_id != driver.id:
            raise NotFoundError("Payout", payout_id)
        return payout_view(payout)

    async def list_payouts(self, page: int = 1, limit: int = 20, status: Optional[PayoutStatus] = None,
                           period: Optional[str] = None) -> Dict[str, Any]:
        if period:
            period_bounds(period)
        async with unit_of_work(self.session_factory) as uow:
            payouts, total = await uow.payouts.page(page, limit, status, period)
        return {"data": [payout_view(p) for p in payouts], "total": total}
