"""
Route and RouteStop database models.

A route is a driver-published trip from a campus with a fixed number of
seats. Stops are the pickup points, ordered 1..n.
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, ForeignKey, DateTime, Date, Time, Enum,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.route_enums import RouteStatus, Campus


class Route(Base):
    """
    Route model.

    Invariant: 0 <= seats_available <= seats_total. seats_available is only
    ever changed by conditional UPDATEs in the route repository.
    """
    __tablename__ = "routes"
    __table_args__ = (
        CheckConstraint("seats_available >= 0", name="ck_routes_seats_non_negative"),
        CheckConstraint("seats_available <= seats_total", name="ck_routes_seats_bounded"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)

    # Nullable: a route outlives the removal of its driver account
    driver_id = Column(Integer, ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True)

    origin = Column(Enum(Campus), nullable=False)
    departure_date = Column(Date, nullable=False, index=True)
    departure_time = Column(Time, nullable=False)
    destination = Column(String(255), nullable=False)

    seats_total = Column(Integer, nullable=False)
    seats_available = Column(Integer, nullable=False)
    price_per_seat = Column(Float, nullable=False)

    status = Column(Enum(RouteStatus), default=RouteStatus.ACTIVE, nullable=False, index=True)
    message = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    stops = relationship(
        "RouteStop",
        order_by="RouteStop.order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    @property
    def departure_at(self) -> datetime:
        return datetime.combine(self.departure_date, self.departure_time)

    def __repr__(self):
        return f"<Route(id={self.id}, public_id='{self.public_id}', status='{self.status.value}')>"


class RouteStop(Base):
    """Pickup point on a route."""
    __tablename__ = "route_stops"
    __table_args__ = (
        UniqueConstraint("route_id", "order", name="uq_route_stops_route_order"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    public_id = Column(String(12), unique=True, nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("routes.id", ondelete="CASCADE"), nullable=False, index=True)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    address = Column(String(500), nullable=False)
    order = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<RouteStop(route_id={self.route_id}, order={self.order})>"
