"""
Payout database model.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import PayoutStatus


class Payout(Base):
    """
    Payout model.

    Monthly aggregation of a driver's settled payments. Only PENDING payouts
    move money; PAID and FAILED are terminal for automated logic.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        UniqueConstraint("driver_id", "period", name="uq_payouts_driver_period"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)

    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False, index=True)
    period = Column(String(7), nullable=False, index=True)  # YYYY-MM

    amount = Column(Float, nullable=False)
    status = Column(Enum(PayoutStatus), default=PayoutStatus.PENDING, nullable=False, index=True)

    gateway_batch_id = Column(String(64), nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(String(500), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    # Set while the batch is in flight at the gateway
    processing_since = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payout(id={self.id}, period='{self.period}', status='{self.status.value}', amount={self.amount})>"
