"""
User and driver enumerations.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Operator with settlement and override access
        DRIVER: Publishes routes and confirms trips
        PASSENGER: Books seats and pays
    """
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"
    PASSENGER = "PASSENGER"


class DriverStatus(str, enum.Enum):
    """Driver onboarding status."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
