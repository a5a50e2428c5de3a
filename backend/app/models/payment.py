"""
Payment database model.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import PaymentStatus
from backend.app.models.booking_enums import PaymentMethod


class Payment(Base):
    """
    Payment model.

    Exactly one per booking. Survives booking cancellation for audit.
    PENDING -> PAID -> REVERSED, with FAILED as explicit residue.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)

    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False, index=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)

    # Gateway references
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_capture_id = Column(String(64), nullable=True)
    failure_reason = Column(String(500), nullable=True)

    # Claimed by at most one payout
    payout_id = Column(Integer, ForeignKey("payouts.id"), nullable=True, index=True)

    paid_at = Column(DateTime, nullable=True, index=True)
    reversed_at = Column(DateTime, nullable=True)

    # Set while a refund is in flight at the gateway
    processing_since = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, status='{self.status.value}', amount={self.amount})>"
