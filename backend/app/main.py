"""
FastAPI Application Entry Point.

This is the main application file for the Carpool Settlement Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.core.logging_setup import configure_logging, get_logger
from backend.app.core.observability import ObservabilityMiddleware
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.wiring import get_services
from backend.app.workers.route_finalizer import RouteFinalizer

# Import models to ensure they are registered with Base
from backend.app.models.driver import Driver, Vehicle, UserProfile  # noqa: F401
from backend.app.models.route import Route, RouteStop  # noqa: F401
from backend.app.models.booking import Booking  # noqa: F401
from backend.app.models.payout import Payout  # noqa: F401
from backend.app.models.payment import Payment  # noqa: F401
from backend.app.models.audit_log import AuditLog  # noqa: F401

configure_logging(settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the route auto-finalize sweep, stopped on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    finalizer = None
    if settings.route_sweep_enabled:
        finalizer = RouteFinalizer(get_services().routes, settings.route_sweep_interval_seconds)
        finalizer.start()

    logger.info("%s started", settings.app_name)
    yield

    if finalizer:
        await finalizer.stop()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip lifecycle and settlement backend for campus carpooling",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
