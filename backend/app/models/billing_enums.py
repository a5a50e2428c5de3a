"""
Billing enumerations.
"""

import enum


class PaymentStatus(str, enum.Enum):
    """Payment status enumeration."""
    PENDING = "PENDING"  # Created, not captured yet
    PAID = "PAID"  # Captured (digital) or collected (cash)
    FAILED = "FAILED"  # Explicit residue of a failed capture, refund or cancellation
    REVERSED = "REVERSED"  # Refunded


class PayoutStatus(str, enum.Enum):
    """Payout status enumeration."""
    PENDING = "PENDING"  # Aggregated, money not sent
    PAID = "PAID"  # Batch accepted by the provider
    FAILED = "FAILED"  # Provider rejected or admin override
