"""
Centralized Test Configuration.

Every test gets its own in-memory SQLite database, a dict-backed Redis, a
scripted payment gateway and a fixed clock, wired through the same
`build_services` the application uses.
"""

from datetime import date, datetime, time, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.pool import Pool, StaticPool

from backend.app.main import app
from backend.app.core.config import Settings
from backend.app.core.exceptions import GatewayError
from backend.app.core.jwt import create_access_token
from backend.app.db.session import Base, build_engine, build_session_factory, get_db
from backend.app.models.driver import Driver, Vehicle, UserProfile
from backend.app.models.enums import DriverStatus, UserRole
from backend.app.models.route_enums import Campus
from backend.app.schemas.route import RouteCreate, StopIn
from backend.app.services.paypal_client import (
    CAPTURE_COMPLETED, PAYOUT_BATCH_SUCCESS,
    GatewayCapture, GatewayOrder, GatewayPayoutBatch, GatewayRefund
)
from backend.app.services.public_ids import PublicIdPrefix, build_public_id
from backend.app.wiring import build_services, get_services

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2025, 1, 15, 8, 0)
TOMORROW = NOW.date() + timedelta(days=1)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        self.store = {}
        self.ttls = {}


class FakeGateway:
    """
    Scripted PayPal stand-in.

    `fail(operation, reason)` makes the next call to that operation raise a
    GatewayError; `capture_status` and `payout_status` control the
    provider-reported outcome.
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.capture_status = CAPTURE_COMPLETED
        self.payout_status = PAYOUT_BATCH_SUCCESS

    def fail(self, operation: str, reason: str = "provider unavailable"):
        self.failures[operation] = reason

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        if operation in self.failures:
            raise GatewayError(self.failures.pop(operation), operation=operation)

    async def create_order(self, amount, currency, reference_id):
        self._record("create_order", amount=amount, currency=currency, reference_id=reference_id)
        order_id = f"ORDER-{reference_id}"
        return GatewayOrder(order_id=order_id, approval_url=f"https://paypal.test/approve/{order_id}")

    async def capture_order(self, order_id):
        self._record("capture_order", order_id=order_id)
        completed = self.capture_status == CAPTURE_COMPLETED
        return GatewayCapture(status=self.capture_status, capture_id=f"CAP-{order_id}" if completed else None)

    async def refund_capture(self, capture_id):
        self._record("refund_capture", capture_id=capture_id)
        return GatewayRefund(refund_id=f"REF-{capture_id}", status="COMPLETED")

    async def create_payout(self, sender_batch_id, receiver_email, amount, currency, sender_item_id, note):
        self._record("create_payout", sender_batch_id=sender_batch_id, receiver_email=receiver_email,
                     amount=amount, currency=currency)
        return GatewayPayoutBatch(batch_id=f"BATCH-{sender_item_id}", batch_status=self.payout_status)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
async def engine():
    test_engine = build_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def test_settings():
    return Settings(
        otp_secret="test-otp-secret",
        route_sweep_enabled=False,
        paypal_client_id="test-client",
        paypal_client_secret="test-secret",
    )


@pytest.fixture
def services(session_factory, redis, gateway, clock, test_settings):
    return build_services(session_factory, redis, test_settings, gateway=gateway, clock=clock)


@pytest.fixture
async def client(services, session_factory):
    """Async client wired to the per-test service graph."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


def auth_headers(user_id: int, role: UserRole) -> dict:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


def build_route(seats: int = 3, price: float = 10.0, departure_date: date = TOMORROW,
               departure_time: time = time(7, 30), stops=None) -> RouteCreate:
    return RouteCreate(
        origin=Campus.CAMPUS_PRINCIPAL,
        departure_date=departure_date,
        departure_time=departure_time,
        destination="Downtown",
        seats_total=seats,
        price_per_seat=price,
        stops=stops if stops is not None else [
            StopIn(lat=4.60, lng=-74.08, address="Campus gate"),
            StopIn(lat=4.70, lng=-74.05, address="Downtown terminal"),
        ],
    )


@pytest.fixture
def make_driver(session_factory):
    """Create an approved driver with an active vehicle and a rating profile."""
    async def _make(user_id: int, seats: int = 4, paypal_email="driver@example.com",
                    status: DriverStatus = DriverStatus.APPROVED, rating: float = 5.0,
                    with_vehicle: bool = True) -> Driver:
        async with session_factory() as session:
            driver = Driver(
                public_id=build_public_id(PublicIdPrefix.DRIVER),
                user_id=user_id,
                status=status,
                paypal_email=paypal_email,
            )
            session.add(driver)
            await session.flush()
            if with_vehicle:
                session.add(Vehicle(
                    public_id=build_public_id(PublicIdPrefix.VEHICLE),
                    driver_id=driver.id,
                    plate=f"ABC{user_id:03d}",
                    seats=seats,
                    is_active=True,
                ))
            session.add(UserProfile(user_id=user_id, rating_average=rating))
            await session.commit()
            return driver
    return _make


@pytest.fixture
def make_passenger(session_factory):
    async def _make(user_id: int, rating: float = 5.0, blocked: bool = False) -> UserProfile:
        async with session_factory() as session:
            profile = UserProfile(user_id=user_id, rating_average=rating, is_rating_blocked=blocked)
            session.add(profile)
            await session.commit()
            return profile
    return _make


@pytest.fixture
def auth():
    return auth_headers


@pytest.fixture
def new_route():
    return build_route


@pytest.fixture
def fetch(session_factory):
    """Load a row by public id in a fresh session."""
    async def _fetch(model, public_id: str):
        async with session_factory() as session:
            result = await session.execute(select(model).where(model.public_id == public_id))
            return result.scalar_one_or_none()
    return _fetch
