"""
Database seeding script for development drivers and riders.

Creates an approved driver with an active vehicle and two rider profiles so
the trip flow can be exercised against a fresh database. Identities live in
the identity service; only the user ids below are assumed to exist there.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from backend.app.db.session import AsyncSessionLocal
from backend.app.models.driver import Driver, UserProfile, Vehicle
from backend.app.models.enums import DriverStatus
from backend.app.services.public_ids import PublicIdPrefix, build_public_id

DRIVER_USER_ID = 100
RIDER_USER_IDS = (200, 201)


async def seed_drivers():
    """
    Seed one approved driver and two riders.

    Creates:
    - Driver for user 100 with a 4-seat vehicle and a PayPal email
    - Rating profiles for users 100, 200 and 201
    """
    async with AsyncSessionLocal() as db:
        print("Starting driver seeding...")

        result = await db.execute(select(Driver).where(Driver.user_id == DRIVER_USER_ID))
        if result.scalar_one_or_none():
            print("Driver already exists, skipping seeding")
            return

        driver = Driver(
            public_id=build_public_id(PublicIdPrefix.DRIVER),
            user_id=DRIVER_USER_ID,
            status=DriverStatus.APPROVED,
            paypal_email="driver@carpool.dev",
        )
        db.add(driver)
        await db.flush()

        db.add(Vehicle(
            public_id=build_public_id(PublicIdPrefix.VEHICLE),
            driver_id=driver.id,
            plate="ABC123",
            seats=4,
        ))
        for user_id in (DRIVER_USER_ID, *RIDER_USER_IDS):
            db.add(UserProfile(user_id=user_id))

        await db.commit()

        print(f"Created driver {driver.public_id} (user {DRIVER_USER_ID})")
        print(f"Created rider profiles for users {', '.join(str(u) for u in RIDER_USER_IDS)}")


if __name__ == "__main__":
    asyncio.run(seed_drivers())
