"""
Booking-related enumerations.
"""

import enum


class BookingStatus(str, enum.Enum):
    """Booking status enumeration. CONFIRMED is the only non-terminal state."""
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentMethod(str, enum.Enum):
    """How the passenger pays for the seat."""
    PAYPAL = "PAYPAL"
    CARD = "CARD"  # card checkout processed through PayPal
    CASH = "CASH"

    @property
    def is_digital(self) -> bool:
        return self in (PaymentMethod.PAYPAL, PaymentMethod.CARD)


class RefundOutcome(str, enum.Enum):
    """What happened to the money when a passenger cancelled."""
    NO_REFUND = "NO_REFUND"  # inside the refund cutoff, payment untouched
    NOT_REQUIRED = "NOT_REQUIRED"  # nothing was captured
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"  # reversal failed, payment left FAILED
