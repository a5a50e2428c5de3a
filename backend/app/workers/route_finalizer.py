"""
Route auto-finalize worker.

Periodically finalizes ACTIVE routes whose departure has passed and that
have no outstanding bookings. Runs inside the API process, started and
stopped by the application lifespan.
"""

import asyncio
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.logging_setup import get_logger
from backend.app.domain.routes.route_service import RouteService

logger = get_logger(__name__)


class RouteFinalizer:
    def __init__(self, routes: RouteService, interval_seconds: int):
        self.routes = routes
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> list:
        try:
            return await self.routes.auto_finalize_expired_routes()
        except SQLAlchemyError:
            logger.exception("Route auto-finalize sweep failed")
            return []

    async def _loop(self):
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Route finalizer started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Route finalizer stopped")
