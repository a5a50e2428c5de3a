"""
Service wiring.

Builds the service graph once from the settings, the session factory and
the Redis client. Endpoints reach it through the `get_services` dependency,
which tests override with an in-memory graph.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from backend.app.core.config import Settings, settings as app_settings
from backend.app.core.otp import OtpCipher
from backend.app.db.session import AsyncSessionLocal
from backend.app.domain.billing.payment_service import PaymentService
from backend.app.domain.billing.payout_service import PayoutService
from backend.app.domain.bookings.booking_service import BookingService
from backend.app.domain.routes.route_service import RouteService
from backend.app.services.audit import AuditService
from backend.app.services.idempotency import IdempotencyStore
from backend.app.services.paypal_client import PaymentGateway, PaypalClient


@dataclass
class Services:
    session_factory: async_sessionmaker
    audit: AuditService
    payments: PaymentService
    routes: RouteService
    bookings: BookingService
    payouts: PayoutService


def build_services(
    session_factory: async_sessionmaker,
    redis,
    settings: Settings,
    gateway: Optional[PaymentGateway] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    clock = clock or datetime.utcnow
    gateway = gateway or PaypalClient.from_settings(settings)
    audit = AuditService(session_factory)
    idempotency = IdempotencyStore(redis, ttl_seconds=settings.idempotency_ttl_seconds)

    payments = PaymentService(session_factory, gateway, idempotency, audit, settings, clock)
    routes = RouteService(session_factory, payments, audit, settings, clock)
    bookings = BookingService(session_factory, routes, payments, OtpCipher(settings.otp_secret),
                              audit, settings, clock)
    payouts = PayoutService(session_factory, gateway, idempotency, audit, settings, clock)

    return Services(
        session_factory=session_factory,
        audit=audit,
        payments=payments,
        routes=routes,
        bookings=bookings,
        payouts=payouts,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency returning the process-wide service graph."""
    global _services
    if _services is None:
        from backend.app.core.redis_client import redis_client
        _services = build_services(AsyncSessionLocal, redis_client, app_settings)
    return _services
