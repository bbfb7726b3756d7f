"""
Tracking service: everything that moves a rider or driver on the map.

* ``report_driver_location`` -- persist the latest driver position, tag it
  with an H3 cell and advance the odometer of the driver's ``ongoing`` ride.
  Samples older than the stored one are acknowledged but not applied.
* ``update_rider_location``  -- the pickup point used by the next dispatch.
* ``set_driver_availability`` -- idle <-> offline; ``busy`` is owned by the
  dispatcher and the lifecycle, never set from here.
* ``find_nearby_drivers``    -- map listing, nearest first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.clock import ensure_utc, utcnow
from src.domain.distance import haversine_km
from src.domain.entities import LocationSample, validate_coordinates
from src.domain.enums import DriverStatus, RideStatus
from src.domain.errors import (
    DriverBusy,
    DriverNotFound,
    InvalidDriverStatus,
    RiderNotFound,
)
from src.domain.matching import cell_for, rank_drivers
from src.infrastructure.models import DriverModel, RiderModel
from src.infrastructure.repositories import (
    DriverRepository,
    RideRepository,
    RiderRepository,
)

logger = logging.getLogger(__name__)


class TrackingService:
    def __init__(
        self,
        session: AsyncSession,
        h3_resolution: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.h3_resolution = h3_resolution
        self.clock = clock
        self.drivers = DriverRepository(session)
        self.riders = RiderRepository(session)
        self.rides = RideRepository(session)

    async def report_driver_location(
        self,
        driver_id: int,
        lat: float,
        lng: float,
        recorded_at: Optional[datetime] = None,
    ) -> LocationSample:
        validate_coordinates(lat, lng)
        driver = await self.drivers.get_by_id(driver_id)
        if driver is None:
            raise DriverNotFound(f"Driver {driver_id} not found")

        now = self.clock()
        recorded_at = ensure_utc(recorded_at) or now
        if recorded_at > now:
            # a device clock running ahead must not pin the stored position
            logger.debug("Driver %s: clamping sample from %s to %s", driver_id, recorded_at, now)
            recorded_at = now
        cell = cell_for(lat, lng, self.h3_resolution)
        ride = await self.rides.get_active_for_driver(driver_id)
        sample = LocationSample(
            driver_id=driver_id,
            lat=lat,
            lng=lng,
            recorded_at=recorded_at,
            ride_id=ride.id if ride else None,
            cell=cell,
        )

        last_seen = ensure_utc(driver.location_updated_at)
        if last_seen is not None and recorded_at < last_seen:
            logger.debug(
                "Driver %s: ignoring sample from %s (stored %s)",
                driver_id, recorded_at, last_seen,
            )
            return sample

        if (
            ride is not None
            and RideStatus(ride.status) == RideStatus.ONGOING
            and driver.current_lat is not None
            and driver.current_lng is not None
        ):
            delta = haversine_km(driver.current_lat, driver.current_lng, lat, lng)
            await self.rides.add_distance(ride.id, delta)

        driver.current_lat = lat
        driver.current_lng = lng
        driver.h3_cell = cell
        driver.location_updated_at = recorded_at
        await self.session.flush()
        return sample

    async def update_rider_location(
        self, rider_id: int, lat: float, lng: float
    ) -> RiderModel:
        validate_coordinates(lat, lng)
        rider = await self.riders.get_by_id(rider_id)
        if rider is None:
            raise RiderNotFound(f"Rider {rider_id} not found")
        rider.current_lat = lat
        rider.current_lng = lng
        rider.location_updated_at = self.clock()
        await self.session.flush()
        return rider

    async def set_driver_availability(
        self, driver_id: int, status: DriverStatus
    ) -> DriverModel:
        try:
            target = DriverStatus(status)
        except ValueError:
            raise InvalidDriverStatus(f"Unknown driver status {status!r}") from None
        if target == DriverStatus.BUSY:
            raise InvalidDriverStatus("Drivers become busy only through dispatch")

        driver = await self.drivers.get_by_id(driver_id)
        if driver is None:
            raise DriverNotFound(f"Driver {driver_id} not found")

        current = DriverStatus(driver.status)
        if current == target:
            return driver
        if current == DriverStatus.BUSY:
            raise DriverBusy(f"Driver {driver_id} is on a ride")

        if not await self.drivers.update_if(driver_id, current, target):
            await self.drivers.reload(driver)
            raise DriverBusy(
                f"Driver {driver_id} changed to {DriverStatus(driver.status).value}"
            )
        await self.drivers.reload(driver)
        logger.info("Driver %s: %s -> %s", driver_id, current.value, target.value)
        return driver

    async def find_nearby_drivers(
        self,
        lat: float,
        lng: float,
        radius_km: float = 5.0,
        limit: int = 20,
        idle_only: bool = True,
    ) -> list[tuple[float, DriverModel]]:
        validate_coordinates(lat, lng)
        drivers = await self.drivers.get_with_location()
        ranked = rank_drivers(drivers, lat, lng, idle_only=idle_only)
        return [pair for pair in ranked if pair[0] <= radius_km][:limit]
