"""
Route-related enumerations.
"""

import enum


class RouteStatus(str, enum.Enum):
    """Route status enumeration."""
    ACTIVE = "ACTIVE"  # Published, accepting bookings
    CANCELLED = "CANCELLED"  # Cancelled by the driver
    FINALIZED = "FINALIZED"  # Trip over, no outstanding bookings


class Campus(str, enum.Enum):
    """Route origin campus."""
    CAMPUS_PRINCIPAL = "CAMPUS_PRINCIPAL"
    EL_BOSQUE = "EL_BOSQUE"
