"""
Driver-side supporting models.

Drivers, their vehicles and rider profiles are owned by onboarding and the
rating flow; the trip engine reads them as preconditions.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import DriverStatus


class Driver(Base):
    """Driver account linked to an identity-service user."""
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)
    user_id = Column(Integer, unique=True, nullable=False, index=True)

    status = Column(Enum(DriverStatus), default=DriverStatus.PENDING, nullable=False)
    paypal_email = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Driver(id={self.id}, user_id={self.user_id}, status='{self.status.value}')>"


class Vehicle(Base):
    """Vehicle registered by a driver. Only active vehicles count for route creation."""
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False, index=True)

    plate = Column(String(20), nullable=False)
    seats = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.plate}', seats={self.seats})>"


class UserProfile(Base):
    """Rating profile of any user; gates both route creation and booking."""
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, unique=True, nullable=False, index=True)

    rating_average = Column(Float, default=5.0, nullable=False)
    is_rating_blocked = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<UserProfile(user_id={self.user_id}, rating={self.rating_average})>"
