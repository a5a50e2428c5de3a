"""
Audit logging service for trip, payment and payout events.

Events are fire-and-forget: each is written in its own session so a failed
audit write never rolls back or fails the business operation.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional, Dict, Any

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.exceptions import AppException
from backend.app.core.logging_setup import get_logger
from backend.app.models.audit_log import AuditLog

logger = get_logger(__name__)


class AuditAction:
    """Standardized audit action constants."""
    # Routes
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_STOP_ADDED = "ROUTE_STOP_ADDED"
    ROUTE_CANCELLED_DRIVER = "ROUTE_CANCELLED_DRIVER"
    ROUTE_COMPLETED = "ROUTE_COMPLETED"

    # Bookings
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CANCELLED_PASSENGER = "BOOKING_CANCELLED_PASSENGER"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_NO_SHOW = "BOOKING_NO_SHOW"
    CASH_DEBT_SETTLED = "CASH_DEBT_SETTLED"

    # Trip OTP
    TRIP_OTP_VALIDATED = "TRIP_OTP_VALIDATED"
    TRIP_OTP_INVALID = "TRIP_OTP_INVALID"
    TRIP_OTP_REUSED = "TRIP_OTP_REUSED"

    # Payments
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"

    # Payouts
    WITHDRAWAL_REQUESTED = "WITHDRAWAL_REQUESTED"
    WITHDRAWAL_COMPLETED = "WITHDRAWAL_COMPLETED"
    WITHDRAWAL_FAILED = "WITHDRAWAL_FAILED"


class AuditResult:
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AuditContext:
    """Request origin attached to audit events."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditService:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def log_event(
        self,
        action: str,
        user_id: Optional[int] = None,
        result: str = AuditResult.SUCCESS,
        context: Optional[AuditContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Persist one audit event.

        Args:
            action: Action being recorded (use AuditAction constants)
            user_id: Acting user, None for system sweeps
            result: AuditResult value
            context: Request origin (ip, user agent)
            metadata: Additional JSON context
        """
        context = context or AuditContext()
        try:
            async with self.session_factory() as session:
                session.add(AuditLog(
                    action=action,
                    result=result,
                    user_id=user_id,
                    ip_address=context.ip_address,
                    user_agent=(context.user_agent or "")[:255] or None,
                    meta_data=metadata,
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write audit event %s", action)

    @asynccontextmanager
    async def failures(
        self,
        action: str,
        user_id: Optional[int] = None,
        context: Optional[AuditContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Record a FAILED `action` event when the block raises a domain error, then re-raise it."""
        try:
            yield
        except AppException as exc:
            await self.log_event(
                action, user_id, AuditResult.FAILED, context,
                metadata={**(metadata or {}), "error_code": exc.error_code, "reason": exc.message},
            )
            raise


async def get_audit_trail(
    db: AsyncSession,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if user_id:
        query = query.where(AuditLog.user_id == user_id)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return result.scalars().all()
