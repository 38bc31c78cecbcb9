"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) with the production
models, so tests run without Docker / PostgreSQL / Redis.  A ``StaticPool``
keeps every session on the same in-memory connection.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ridedispatch.domain.entities import Location
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.infrastructure.database import Base
from ridedispatch.infrastructure.models import DriverModel
from ridedispatch.infrastructure.repositories import DriverRepository
from ridedispatch.services.lifecycle import RequestLifecycleManager, RideRequestParams

TEST_DB_URL = "sqlite+aiosqlite://"

# Mumbai airport, used as the default pickup everywhere
AIRPORT = Location(19.0896, 72.8656)
ANDHERI = Location(19.1176, 72.8490)

NOW = datetime(2026, 3, 4, 14, 0, tzinfo=timezone.utc)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema per test; yields a session factory bound to it."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Factories ─────────────────────────────────────────────────────────


@pytest.fixture
def make_driver(db_session):
    """Insert an online, available driver and return its id."""

    async def _make(
        location: Location = AIRPORT,
        *,
        rating: float = 4.5,
        vehicle_class: VehicleClass = VehicleClass.CAR,
        organization=None,
        is_online: bool = True,
        is_available: bool = True,
    ) -> int:
        driver = await DriverRepository(db_session).create(
            DriverModel(
                name="Test Driver",
                rating=rating,
                vehicle_class=vehicle_class,
                vehicle_info="Test Car MH01AA0001",
                organization=organization,
                is_online=is_online,
                is_available=is_available,
                current_lat=location.latitude,
                current_lng=location.longitude,
            )
        )
        driver_id = driver.id
        await db_session.commit()
        return driver_id

    return _make


@pytest.fixture
def ride_params():
    def _params(**overrides) -> RideRequestParams:
        values = dict(
            passenger_id=1,
            pickup=AIRPORT,
            drop=ANDHERI,
            vehicle_class=VehicleClass.CAR,
            fare=180.0,
            distance_km=3.6,
            duration_min=12.0,
        )
        values.update(overrides)
        return RideRequestParams(**values)

    return _params


@pytest.fixture
def make_request(db_session, ride_params):
    """Create a ride request through the lifecycle manager; returns its id."""

    async def _make(*, now: datetime = NOW, **overrides) -> int:
        manager = RequestLifecycleManager(db_session, clock=lambda: now)
        request = await manager.create(ride_params(**overrides))
        return request.id

    return _make
