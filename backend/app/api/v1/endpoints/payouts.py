"""
Payout API Endpoints (driver view).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from backend.app.core.dependencies import Principal
from backend.app.core.guards import require_role
from backend.app.models.billing_enums import PayoutStatus
from backend.app.models.enums import UserRole
from backend.app.schemas.payout import PayoutResponse
from backend.app.services.public_ids import PUBLIC_ID_PATTERN
from backend.app.wiring import Services, get_services

router = APIRouter(prefix="/payouts", tags=["Payouts"])

require_driver = require_role([UserRole.DRIVER])


@router.get("/me", response_model=List[PayoutResponse])
async def list_my_payouts(
    status_filter: Optional[PayoutStatus] = Query(None, alias="status"),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.payouts.list_driver_payouts(principal.user_id, status_filter)


@router.get("/{payout_id}", response_model=PayoutResponse)
async def get_my_payout(
    payout_id: str = Path(..., pattern=PUBLIC_ID_PATTERN),
    principal: Principal = Depends(require_driver),
    services: Services = Depends(get_services),
):
    return await services.payouts.get_driver_payout(principal.user_id, payout_id)
