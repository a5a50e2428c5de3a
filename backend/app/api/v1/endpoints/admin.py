"""
Admin API Endpoints.

Operator actions on payments, payouts and cash debts, plus the audit trail.
Money-moving actions accept an optional `Idempotency-Key` header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import Principal
from backend.app.core.guards import require_admin
from backend.app.db.session import get_db
from backend.app.models.billing_enums import PaymentStatus, PayoutStatus
from backend.app.schemas.audit import AuditLogResponse, AuditTrailResponse
from backend.app.schemas.booking import CashDebtSettledResponse
from backend.app.schemas.payment import PaymentListResponse, PaymentStatusResponse
from backend.app.schemas.payout import (
    PERIOD_FIELD_PATTERN, PayoutActionResponse, PayoutFailRequest, PayoutGenerateRequest,
    PayoutGenerateResponse, PayoutListResponse
)
from backend.app.services.audit import get_audit_trail
from backend.app.services.public_ids import PUBLIC_ID_PATTERN
from backend.app.wiring import Services, get_services

router = APIRouter(prefix="/admin", tags=["Admin"])


# Payments

@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = await services.payments.list_payments(page, page_size, status_filter)
    return PaymentListResponse(data=result["data"], total=result["total"], page=page, page_size=page_size)


@router.post("/payments/{payment_id}/reverse", response_model=PaymentStatusResponse)
async def reverse_payment(
    payment_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """
    Refund a PAID payment.

    A provider failure leaves the payment FAILED and returns 502.
    """
    return await services.payments.reverse_payment(
        payment_id, actor_id=admin.user_id, idempotency_key=idempotency_key, context=admin,
    )


# Payouts

@router.post("/payouts/generate", response_model=PayoutGenerateResponse, status_code=status.HTTP_201_CREATED)
async def generate_payouts(
    body: PayoutGenerateRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Aggregate the period's settled, unclaimed payments into one payout per driver."""
    return await services.payouts.generate_payouts(
        body.period, actor_id=admin.user_id, idempotency_key=idempotency_key, context=admin,
    )


@router.get("/payouts", response_model=PayoutListResponse)
async def list_payouts(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    period: Optional[str] = Query(None, pattern=PERIOD_FIELD_PATTERN),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    result = await services.payouts.list_payouts(page, page_size, status_filter, period)
    return PayoutListResponse(data=result["data"], total=result["total"], page=page, page_size=page_size)


@router.post("/payouts/{payout_id}/paypal", response_model=PayoutActionResponse)
async def execute_paypal_payout(
    payout_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.payouts.execute_paypal_payout(
        payout_id, actor_id=admin.user_id, idempotency_key=idempotency_key, context=admin,
    )


@router.patch("/payouts/{payout_id}/fail", response_model=PayoutActionResponse)
async def fail_payout(
    payout_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    body: Optional[PayoutFailRequest] = None,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.payouts.fail_payout(
        payout_id, body.reason if body else None, actor_id=admin.user_id,
        idempotency_key=idempotency_key, context=admin,
    )


# Bookings

@router.patch("/bookings/{booking_id}/settle-debt", response_model=CashDebtSettledResponse)
async def settle_cash_debt(
    booking_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    admin: Principal = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await services.bookings.settle_cash_debt(booking_id, admin.user_id, context=admin)


# Audit

@router.get("/audit-logs", response_model=AuditTrailResponse)
async def get_audit_logs(
    user_id: int = Query(None, description="Filter by acting user ID"),
    action: str = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records to return"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Get audit trail with optional filtering (admin-only).

    Returns recent trip, payment and payout events for dispute handling.
    """
    logs = await get_audit_trail(db=db, user_id=user_id, action=action, limit=limit)

    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )
