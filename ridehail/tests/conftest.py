"""
Centralized Test Configuration.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from ridehail.app.main import app
from ridehail.app.db.session import get_db, Base
from ridehail.app.core.jwt import create_access_token
from ridehail.app.core.redis_client import get_redis
import ridehail.app.core.redis_client as redis_client_module
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.models.enums import UserType, VehicleType
from ridehail.app.models.pricing_plan import PricingPlan
from ridehail.app.models.user import User
from ridehail.app.models.vehicle import Vehicle
from ridehail.app.services.matching_notifier import ConnectionRegistry, get_notifier

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        if self._closed:
            raise ConnectionError("Redis closed")
        self.published.append((channel, message))
        return 1

    async def flushdb(self):
        self.store = {}
        self.published = []

    async def aclose(self):
        self._closed = True


class RecordingNotifier:
    """Stands in for MatchingNotifier and records every call."""

    def __init__(self):
        self.registry = ConnectionRegistry()
        self.calls = []

    def names(self):
        return [name for name, _ in self.calls]

    async def notify_new_trip(self, trip):
        self.calls.append(("new_trip", (trip.id,)))

    async def notify_matched(self, rider_id, trip_id, driver_id):
        self.calls.append(("matched", (rider_id, trip_id, driver_id)))

    async def notify_cancelled(self, rider_id, trip_id, reason, driver_id=None):
        self.calls.append(("cancelled", (rider_id, trip_id, reason)))

    async def notify_status(self, rider_id, trip_id, status):
        self.calls.append(("status", (rider_id, trip_id, status)))

    async def forward_location(self, rider_id, trip_id, driver_id, lat, lng):
        self.calls.append(("location", (rider_id, trip_id, lat, lng)))


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def notifier():
    """Route API notifications to a recorder."""
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def catalog(db_session):
    """Default plans and promo codes."""
    await PricingCatalog.ensure_defaults(db_session)
    return db_session


@pytest.fixture
async def flat_plan(db_session):
    """Plan with simple numbers: $2.00 base, $0.40/km, no time charge, $5.00 minimum."""
    plan = PricingPlan(
        name="basic",
        display_name="Basic",
        vehicle_type=VehicleType.ECONOMY,
        base_fare=Decimal("2.00"),
        per_km_rate=Decimal("0.40"),
        per_minute_rate=Decimal("0"),
        minimum_fare=Decimal("5.00"),
        cancellation_fee=Decimal("2.50"),
        booking_fee=Decimal("0"),
        surge_multiplier=Decimal("1.00"),
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


@pytest.fixture
def make_user(db_session):
    async def _make(user_id, user_type=UserType.RIDER, online=False, with_vehicle=False):
        user = User(
            id=user_id,
            email=f"{user_id}@test.com",
            first_name=user_id,
            user_type=user_type,
            is_driver_active=online,
        )
        db_session.add(user)
        vehicle = None
        if with_vehicle:
            vehicle = Vehicle(
                driver_id=user_id,
                make="Toyota",
                model="Prius",
                year=2021,
                color="White",
                license_plate=f"PL-{user_id}"[:20].upper(),
                vehicle_type=VehicleType.ECONOMY,
            )
            db_session.add(vehicle)
        await db_session.commit()
        return user, vehicle
    return _make


def token_for(user_id, user_type="rider", **claims):
    return create_access_token(data={"sub": user_id, "user_type": user_type, "email": f"{user_id}@test.com", **claims})


@pytest.fixture
def auth():
    """Bearer header factory: auth("rider-1") or auth("driver-1", "driver")."""
    def _auth(user_id, user_type="rider"):
        return {"Authorization": f"Bearer {token_for(user_id, user_type)}"}
    return _auth


@pytest.fixture
def trip_request():
    return {
        "pickup_address": "1 Market St",
        "pickup_lat": 37.7936,
        "pickup_lng": -122.3950,
        "destination_address": "Golden Gate Park",
        "destination_lat": 37.7694,
        "destination_lng": -122.4862,
        "ride_type": "economy",
    }


@pytest.fixture
async def parties(make_user, flat_plan):
    """rider-1 and rider-2, driver-1 and driver-2 online with a vehicle each, and the basic plan."""
    await make_user("rider-1")
    await make_user("rider-2")
    _, vehicle_1 = await make_user("driver-1", UserType.DRIVER, online=True, with_vehicle=True)
    _, vehicle_2 = await make_user("driver-2", UserType.DRIVER, online=True, with_vehicle=True)
    return {"driver-1": vehicle_1, "driver-2": vehicle_2}


@pytest.fixture
def lifecycle(db_session, notifier):
    return TripLifecycle(db_session, notifier)


@pytest.fixture
def off_peak(mocker):
    """Trips are priced at request time; keep that outside the rush-hour windows."""
    return mocker.patch("ridehail.app.domain.pricing.calculator.is_peak_time", return_value=False)


@pytest.fixture
def request_trip(lifecycle, off_peak):
    """Request a basic-plan trip; 20 km off-peak quotes $10.00."""
    async def _request(rider_id="rider-1", via=None, **overrides):
        params = dict(
            pickup_address="1 Market St",
            pickup_lat=37.7936,
            pickup_lng=-122.3950,
            destination_address="Golden Gate Park",
            destination_lat=37.7694,
            destination_lng=-122.4862,
            ride_type="basic",
            distance=20,
        )
        params.update(overrides)
        return await (via or lifecycle).create(rider_id, **params)
    return _request
