"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import admin, bookings, payments, payouts, routes

router = APIRouter()

# Driver route inventory
router.include_router(routes.router)

# Passenger bookings and the driver trip gate
router.include_router(bookings.router)

# Payments and driver payouts
router.include_router(payments.router)
router.include_router(payouts.router)

# Operator actions and audit trail
router.include_router(admin.router)
