"""
Unit of work.

One session, one transaction, repositories bound to it. Commits when the
block exits normally and rolls back on any exception.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.repositories import (
    DriverRepository, RouteRepository, BookingRepository, PaymentRepository, PayoutRepository
)


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.drivers = DriverRepository(session)
        self.routes = RouteRepository(session)
        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)
        self.payouts = PayoutRepository(session)

    def add(self, instance) -> None:
        self.session.add(instance)

    async def flush(self) -> None:
        await self.session.flush()


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker) -> AsyncIterator[UnitOfWork]:
    async with session_factory() as session:
        async with session.begin():
            yield UnitOfWork(session)
