"""
Booking database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.booking_enums import BookingStatus, PaymentMethod


class Booking(Base):
    """
    Booking model.

    One seat on one route for one passenger. The OTP column holds the
    encrypted code; it never leaves the service in plaintext except to the
    booking's passenger.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("route_id", "passenger_id", name="uq_bookings_route_passenger"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)

    route_id = Column(Integer, ForeignKey("routes.id"), nullable=False, index=True)
    passenger_id = Column(Integer, nullable=False, index=True)

    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False, index=True)
    otp = Column(String(512), nullable=False)
    otp_used = Column(Boolean, default=False, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)

    cancelled_at = Column(DateTime, nullable=True)
    # Set by an operator once a cash no-show / failed cash payment is settled
    debt_resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Booking(id={self.id}, public_id='{self.public_id}', status='{self.status.value}')>"
