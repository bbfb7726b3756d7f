"""FastAPI dependency injection helpers."""

import asyncio
from typing import Awaitable, TypeVar

from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.domain.cancellation import CancellationPolicy
from src.domain.pricing import FareCalculator
from src.infrastructure.database import async_session_factory
from src.realtime.broadcaster import LocationBroadcaster, SubscriberRegistry
from src.services.dispatcher import RideDispatcher
from src.services.lifecycle import RideLifecycle
from src.services.tracking import TrackingService

T = TypeVar("T")


def get_session_factory() -> async_sessionmaker:
    """Used where a request-scoped session does not fit (WebSocket)."""
    return async_session_factory


async def get_db(
    factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def within_budget(awaitable: Awaitable[T]) -> T:
    """Bound a store call by ``store_timeout_seconds`` (504 on expiry)."""
    return await asyncio.wait_for(awaitable, timeout=settings.store_timeout_seconds)


# ── Shared real-time objects (owned by the app) ───────────────────────


def get_registry(conn: HTTPConnection) -> SubscriberRegistry:
    return conn.app.state.registry


def get_broadcaster(conn: HTTPConnection) -> LocationBroadcaster:
    return conn.app.state.broadcaster


# ── Domain services ───────────────────────────────────────────────────


def get_fare_calculator() -> FareCalculator:
    return FareCalculator.from_settings(settings)


def get_cancellation_policy() -> CancellationPolicy:
    return CancellationPolicy.from_settings(settings)


def get_dispatcher(db: AsyncSession = Depends(get_db)) -> RideDispatcher:
    return RideDispatcher(db, max_attempts=settings.dispatch_max_attempts)


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    fares: FareCalculator = Depends(get_fare_calculator),
    policy: CancellationPolicy = Depends(get_cancellation_policy),
) -> RideLifecycle:
    return RideLifecycle(db, fares=fares, policy=policy)


def get_tracking(db: AsyncSession = Depends(get_db)) -> TrackingService:
    return TrackingService(db, h3_resolution=settings.h3_resolution)
