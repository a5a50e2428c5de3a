"""
Public identifier allocation.

Every entity exposed externally carries an id of the form PREFIX_XXXXXXXX.
Internal integer keys never leave the service.
"""

import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

PUBLIC_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PUBLIC_ID_LENGTH = 8
PUBLIC_ID_ATTEMPTS = 5
PUBLIC_ID_PATTERN = r"^[A-Z]{3}_[A-Z0-9]{8}$"
PUBLIC_ID_REGEX = re.compile(PUBLIC_ID_PATTERN)


class PublicIdPrefix:
    ROUTE = "RTE"
    STOP = "STP"
    BOOKING = "BKG"
    PAYMENT = "PAY"
    PAYOUT = "PYT"
    DRIVER = "DRV"
    VEHICLE = "VEH"


class PublicIdExhaustedError(RuntimeError):
    pass


def build_public_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(PUBLIC_ID_ALPHABET) for _ in range(PUBLIC_ID_LENGTH))
    return f"{prefix}_{suffix}"


def is_public_id(value: str) -> bool:
    return bool(PUBLIC_ID_REGEX.match(value or ""))


async def allocate_public_id(session: AsyncSession, model, prefix: str,
                             attempts: int = PUBLIC_ID_ATTEMPTS) -> str:
    """
    Draw random ids until one is unused in `model.public_id`.

    Raises:
        PublicIdExhaustedError: After `attempts` collisions
    """
    for _ in range(attempts):
        candidate = build_public_id(prefix)
        existing = await session.execute(
            select(model.id).where(model.public_id == candidate)
        )
        if existing.scalar_one_or_none() is None:
            return candidate

    raise PublicIdExhaustedError(f"Unable to allocate a unique {prefix} public id")
