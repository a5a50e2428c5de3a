"""
Payment schemas.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from backend.app.models.booking_enums import PaymentMethod
from backend.app.services.public_ids import PUBLIC_ID_PATTERN


class PaymentCreate(BaseModel):
    """Schema for initiating payment of a confirmed booking."""
    booking_id: str = Field(..., pattern=PUBLIC_ID_PATTERN)
    method: PaymentMethod


class PaymentResponse(BaseModel):
    """Schema for payment response."""
    payment_id: str
    booking_id: Optional[str] = None
    amount: float
    currency: str
    method: str
    status: str
    gateway_order_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None


class PaymentCreateResponse(PaymentResponse):
    message: str


class GatewayOrderResponse(BaseModel):
    """PayPal order created; the passenger approves it at `approval_url`."""
    message: str
    payment_id: str
    gateway_order_id: str
    approval_url: str


class CaptureRequest(BaseModel):
    gateway_order_id: str = Field(..., min_length=1, max_length=64)


class PaymentStatusResponse(BaseModel):
    message: str
    payment_id: str
    status: str


class PaymentListResponse(BaseModel):
    """Schema for paginated payment list."""
    data: List[PaymentResponse]
    total: int
    page: int
    page_size: int
