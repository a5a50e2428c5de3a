"""
Payment API Endpoints.

Mutations accept an optional `Idempotency-Key` header; a replay within the
TTL returns the first response without repeating the side effect.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, status

from backend.app.core.dependencies import Principal
from backend.app.core.guards import require_role
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.payment import (
    CaptureRequest, GatewayOrderResponse, PaymentCreate, PaymentCreateResponse,
    PaymentResponse, PaymentStatusResponse
)
from backend.app.services.public_ids import PUBLIC_ID_PATTERN
from backend.app.wiring import Services, get_services

router = APIRouter(prefix="/payments", tags=["Payments"])

require_passenger = require_role([UserRole.PASSENGER])
require_driver = require_role([UserRole.DRIVER])


@router.post("", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment: PaymentCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.payments.create_payment(
        principal.user_id, payment.booking_id, payment.method,
        idempotency_key=idempotency_key, context=principal,
    )


@router.get("/me", response_model=List[PaymentResponse])
async def list_my_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.payments.list_my_payments(principal.user_id, status_filter)


@router.get("/driver", response_model=List[PaymentResponse])
async def list_driver_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    """Payments for bookings on the caller's routes."""
    return await services.payments.list_driver_payments(principal.user_id, status_filter)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.payments.get_payment(principal.user_id, payment_id)


@router.post("/{payment_id}/paypal/order", response_model=GatewayOrderResponse)
async def create_paypal_order(
    payment_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    return await services.payments.create_gateway_order(
        principal.user_id, payment_id, idempotency_key=idempotency_key, context=principal,
    )


@router.post("/{payment_id}/paypal/capture", response_model=PaymentStatusResponse)
async def capture_paypal_order(
    body: CaptureRequest,
    payment_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    principal: Principal = Depends(require_passenger),
    services: Services = Depends(get_services),
):
    """Capture an approved PayPal order. The provider's status is authoritative."""
    return await services.payments.capture_gateway_order(
        principal.user_id, payment_id, body.gateway_order_id,
        idempotency_key=idempotency_key, context=principal,
    )
