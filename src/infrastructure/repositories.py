"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Compare-and-swap
----------------
``update_if(id, expected_status, new_status, **values)`` issues

    UPDATE <table> SET status = :new, ... WHERE id = :id AND status = :expected

and reports whether exactly one row changed.  The same primitive backs
driver reservation (idle -> busy), availability changes and every ride
transition, so two concurrent callers can never both win.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DriverModel, RideModel, RiderModel
from src.domain.enums import ACTIVE_STATUSES, DriverStatus, RideStatus


class _StatusRepository:
    model: Any = None

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, entity_id: int):
        return await self.session.get(self.model, entity_id)

    async def update_if(
        self,
        entity_id: int,
        expected_status,
        new_status,
        *,
        where: Iterable = (),
        **values,
    ) -> bool:
        """Conditional status change; ``True`` only if this call won."""
        stmt = (
            update(self.model)
            .where(
                self.model.id == entity_id,
                self.model.status == expected_status,
                *where,
            )
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def reload(self, entity):
        """Pull the row again after a conditional update."""
        await self.session.refresh(entity)
        return entity


class DriverRepository(_StatusRepository):
    model = DriverModel

    async def get_idle_with_location(self) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(
                DriverModel.status == DriverStatus.IDLE,
                DriverModel.current_lat.is_not(None),
                DriverModel.current_lng.is_not(None),
            )
            .order_by(DriverModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_with_location(self) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(
                DriverModel.current_lat.is_not(None),
                DriverModel.current_lng.is_not(None),
            )
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())

    async def get_stale_idle(self, cutoff: datetime) -> list[DriverModel]:
        """Idle drivers whose last sample is older than *cutoff* (or absent)."""
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.status == DriverStatus.IDLE)
            .where(
                (DriverModel.location_updated_at.is_(None))
                | (DriverModel.location_updated_at < cutoff)
            )
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())

    async def credit_trip(self, driver_id: int, earnings: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(
                total_trips=DriverModel.total_trips + 1,
                total_earnings=DriverModel.total_earnings + earnings,
            )
            .execution_options(synchronize_session=False)
        )


class RiderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, rider_id: int) -> Optional[RiderModel]:
        return await self.session.get(RiderModel, rider_id)

    async def count_trip(self, rider_id: int) -> None:
        await self.session.execute(
            update(RiderModel)
            .where(RiderModel.id == rider_id)
            .values(total_trips=RiderModel.total_trips + 1)
            .execution_options(synchronize_session=False)
        )


class RideRepository(_StatusRepository):
    model = RideModel

    async def create_ride(
        self,
        *,
        rider_id: int,
        driver_id: int,
        pickup_lat: float,
        pickup_lng: float,
        dropoff_lat: float,
        dropoff_lng: float,
        service_type,
        deposit: int = 0,
        rider_snapshot: dict | None = None,
        driver_snapshot: dict | None = None,
        status: RideStatus = RideStatus.ASSIGNED,
    ) -> RideModel:
        ride = RideModel(
            rider_id=rider_id,
            driver_id=driver_id,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            dropoff_lat=dropoff_lat,
            dropoff_lng=dropoff_lng,
            service_type=service_type,
            deposit=deposit,
            rider_snapshot=rider_snapshot,
            driver_snapshot=driver_snapshot,
            status=status,
            distance_km=0.0,
        )
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_for_rider(self, rider_id: int, limit: int = 20) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.rider_id == rider_id)
            .order_by(RideModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_active_for_driver(self, driver_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(list(ACTIVE_STATUSES)),
            )
            .order_by(RideModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_distance(self, ride_id: int, delta_km: float) -> bool:
        """Advance the odometer; only an ``ongoing`` ride accumulates."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == RideStatus.ONGOING)
            .values(distance_km=RideModel.distance_km + delta_km)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
