"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- HTTP test client with DB override
- Test data factories (station, users, fuels, nozzles, payment methods)
"""
# הגדרת JWT_SECRET_KEY לפני ייבוא app: הולידטור דורש מפתח כש-DEBUG=False
import os
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-for-testing-only-do-not-use-in-production")

import pytest
from decimal import Decimal
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.access import ShiftActor
from app.core.auth import create_access_token
from app.db.database import Base, get_db
from app.db.models.station import Station
from app.db.models.user import User, UserRole
from app.db.models.fuel import Fuel
from app.db.models.nozzle import Nozzle
from app.db.models.payment_method import PaymentMethod
from app.db.models.denomination import Denomination
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# הערה: לא מגדירים event_loop fixture מותאם אישית כי pytest-asyncio 0.23+
# מטפל בזה אוטומטית עם asyncio_mode=auto ו-asyncio_default_fixture_loop_scope=function


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def station_factory(db_session: AsyncSession):
    """Factory for creating test stations"""
    async def _create_station(name: str = "Test Station", is_active: bool = True) -> Station:
        station = Station(name=name, is_active=is_active)
        db_session.add(station)
        await db_session.commit()
        await db_session.refresh(station)
        return station

    return _create_station


@pytest.fixture
def user_factory(db_session: AsyncSession):
    """Factory for creating test users"""
    counter = {"n": 0}

    async def _create_user(
        station_id: int,
        role: str = UserRole.ATTENDANT.value,
        username: str | None = None,
        name: str = "Test User",
        is_active: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(
            station_id=station_id,
            username=username or f"user{counter['n']}",
            name=name,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def fuel_factory(db_session: AsyncSession):
    """Factory for creating test fuels"""
    async def _create_fuel(station_id: int, name: str = "Petrol") -> Fuel:
        fuel = Fuel(station_id=station_id, name=name)
        db_session.add(fuel)
        await db_session.commit()
        await db_session.refresh(fuel)
        return fuel

    return _create_fuel


@pytest.fixture
def nozzle_factory(db_session: AsyncSession):
    """Factory for creating test nozzles"""
    async def _create_nozzle(
        station_id: int,
        fuel_id: int,
        code: str = "N1",
        price: Decimal = Decimal("100.00"),
        current_reading: Decimal = Decimal("0.000"),
        is_available: bool = True,
        is_active: bool = True,
    ) -> Nozzle:
        nozzle = Nozzle(
            station_id=station_id,
            fuel_id=fuel_id,
            code=code,
            price=price,
            current_reading=current_reading,
            is_available=is_available,
            is_active=is_active,
        )
        db_session.add(nozzle)
        await db_session.commit()
        await db_session.refresh(nozzle)
        return nozzle

    return _create_nozzle


@pytest.fixture
def payment_method_factory(db_session: AsyncSession):
    """Factory for creating test payment methods"""
    async def _create_payment_method(
        station_id: int,
        name: str = "Cash",
        is_active: bool = True,
    ) -> PaymentMethod:
        method = PaymentMethod(station_id=station_id, name=name, is_active=is_active)
        db_session.add(method)
        await db_session.commit()
        await db_session.refresh(method)
        return method

    return _create_payment_method


@pytest.fixture
def denomination_factory(db_session: AsyncSession):
    """Factory for creating catalog denominations"""
    async def _create_denomination(
        value: Decimal,
        label: str | None = None,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> Denomination:
        denomination = Denomination(
            value=value,
            label=label or f"₹{value}",
            sort_order=sort_order,
            is_active=is_active,
        )
        db_session.add(denomination)
        await db_session.commit()
        await db_session.refresh(denomination)
        return denomination

    return _create_denomination


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def station(station_factory) -> Station:
    return await station_factory()


@pytest.fixture
async def attendant(user_factory, station) -> User:
    return await user_factory(station_id=station.id, username="attendant", name="Ravi")


@pytest.fixture
async def other_attendant(user_factory, station) -> User:
    return await user_factory(station_id=station.id, username="other", name="Meena")


@pytest.fixture
async def manager(user_factory, station) -> User:
    return await user_factory(
        station_id=station.id, role=UserRole.MANAGER.value, username="manager", name="Boss"
    )


@pytest.fixture
async def petrol(fuel_factory, station) -> Fuel:
    return await fuel_factory(station_id=station.id, name="Petrol")


@pytest.fixture
async def nozzle(nozzle_factory, station, petrol) -> Nozzle:
    """פייה עם מונה 1000 ומחיר 100 לליטר"""
    return await nozzle_factory(
        station_id=station.id,
        fuel_id=petrol.id,
        code="N1",
        price=Decimal("100.00"),
        current_reading=Decimal("1000.000"),
    )


@pytest.fixture
async def second_nozzle(nozzle_factory, station, petrol) -> Nozzle:
    return await nozzle_factory(
        station_id=station.id,
        fuel_id=petrol.id,
        code="N2",
        price=Decimal("100.00"),
        current_reading=Decimal("500.000"),
    )


@pytest.fixture
async def cash(payment_method_factory, station) -> PaymentMethod:
    return await payment_method_factory(station_id=station.id, name="Cash")


@pytest.fixture
async def card(payment_method_factory, station) -> PaymentMethod:
    return await payment_method_factory(station_id=station.id, name="Card")


@pytest.fixture
async def cash_notes(denomination_factory) -> dict[int, int]:
    """שטרות 500 ו-100, מחזיר {ערך: id}"""
    five_hundred = await denomination_factory(Decimal("500"), sort_order=1)
    hundred = await denomination_factory(Decimal("100"), sort_order=2)
    return {500: five_hundred.id, 100: hundred.id}


def actor_for(user: User) -> ShiftActor:
    """ShiftActor מתוך משתמש בדיקה"""
    return ShiftActor(user_id=user.id, station_id=user.station_id, role=user.role)


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.station_id, user.role)
    return {"Authorization": f"Bearer {token}"}


# actors מחושבים מראש: אחרי rollback האובייקטים פגי תוקף ואסור לגשת לשדות שלהם
@pytest.fixture
def attendant_actor(attendant) -> ShiftActor:
    return actor_for(attendant)


@pytest.fixture
def other_actor(other_attendant) -> ShiftActor:
    return actor_for(other_attendant)


@pytest.fixture
def manager_actor(manager) -> ShiftActor:
    return actor_for(manager)
