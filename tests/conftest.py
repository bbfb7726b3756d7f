"""
Shared test fixtures.

Each test gets its own SQLite file (via aiosqlite) built from the real ORM
models, so tests run without Docker / PostgreSQL / Redis.  A file rather
than ``:memory:`` lets several sessions (and connections) see the same data,
which the concurrent dispatch tests rely on.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.domain.enums import DriverStatus
from src.infrastructure.database import Base
from src.infrastructure.models import DriverModel, RiderModel


# Taipei Main Station
STATION = (25.0478, 121.5170)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeConnection:
    """Stands in for a WebSocket: records frames, can fail or lag."""

    def __init__(self, fail: bool = False, lag: float = 0.0):
        self.fail = fail
        self.lag = lag
        self.sent: list[dict] = []
        self.closed = False

    async def send_json(self, data) -> None:
        if self.lag:
            await asyncio.sleep(self.lag)
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def of_type(self, event_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == event_type]


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh SQLite file, dispose afterwards."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_connection():
    return FakeConnection


# ── Factories ─────────────────────────────────────────────────────────


@pytest.fixture
def make_rider(session_factory):
    async def _make(
        lat: Optional[float] = STATION[0],
        lng: Optional[float] = STATION[1],
        name: str = "Rider",
    ) -> RiderModel:
        async with session_factory() as session:
            rider = RiderModel(name=name, current_lat=lat, current_lng=lng)
            session.add(rider)
            await session.commit()
            return rider

    return _make


@pytest.fixture
def make_driver(session_factory):
    async def _make(
        lat: Optional[float] = STATION[0],
        lng: Optional[float] = STATION[1],
        status: DriverStatus = DriverStatus.IDLE,
        name: str = "Driver",
        location_updated_at: Optional[datetime] = None,
    ) -> DriverModel:
        async with session_factory() as session:
            driver = DriverModel(
                name=name,
                status=status,
                current_lat=lat,
                current_lng=lng,
                location_updated_at=location_updated_at,
            )
            session.add(driver)
            await session.commit()
            return driver

    return _make
