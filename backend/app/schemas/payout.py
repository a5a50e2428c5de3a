"""
Payout schemas.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

PERIOD_FIELD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class PayoutGenerateRequest(BaseModel):
    period: str = Field(..., pattern=PERIOD_FIELD_PATTERN, description="Calendar month, YYYY-MM")


class PayoutFailRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PayoutResponse(BaseModel):
    """Schema for payout response."""
    payout_id: str
    driver_id: int
    period: str
    amount: float
    status: str
    gateway_batch_id: Optional[str] = None
    attempts: int
    last_error: Optional[str] = None
    paid_at: Optional[datetime] = None


class PayoutActionResponse(PayoutResponse):
    message: str


class PayoutGenerateResponse(BaseModel):
    message: str
    period: str
    payouts: List[PayoutResponse]


class PayoutListResponse(BaseModel):
    """Schema for paginated payout list."""
    data: List[PayoutResponse]
    total: int
    page: int
    page_size: int
