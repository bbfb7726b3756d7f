"""
Ride Dispatcher
===============

``dispatch(rider_id, dropoff)`` finds the nearest idle driver and reserves
them in the same unit of work that creates the ride.

Concurrency safety
------------------
Selection is an optimistic read; the reservation is a conditional update
(``idle -> busy`` only if still idle).  When another request reserved the
chosen driver first, the update touches zero rows, the driver is excluded
and selection runs again on fresh data -- at most ``max_attempts`` times.

Outcomes
--------
* a ``DispatchResult`` carrying the new ride (status ``assigned``),
* a ``DispatchResult`` with ``matched == False`` when nobody is free --
  a normal answer, not an error,
* domain exceptions for bad input, store exceptions for everything else.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import validate_coordinates
from src.domain.enums import DriverStatus, RideStatus, ServiceType
from src.domain.errors import (
    InvalidFareInput,
    RiderLocationMissing,
    RiderNotFound,
)
from src.domain.matching import select_nearest_driver
from src.infrastructure.models import DriverModel, RideModel, RiderModel
from src.infrastructure.repositories import (
    DriverRepository,
    RideRepository,
    RiderRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result object for a dispatch attempt."""

    ride: Optional[RideModel] = None
    driver: Optional[DriverModel] = None
    rider: Optional[RiderModel] = None
    attempts: int = 0
    message: str = ""

    @property
    def matched(self) -> bool:
        return self.ride is not None


def rider_snapshot(rider: RiderModel) -> dict:
    return {
        "id": rider.id,
        "name": rider.name,
        "lat": rider.current_lat,
        "lng": rider.current_lng,
    }


def driver_snapshot(driver: DriverModel) -> dict:
    return {
        "id": driver.id,
        "name": driver.name,
        "lat": driver.current_lat,
        "lng": driver.current_lng,
        "rating": driver.rating,
    }


class RideDispatcher:
    def __init__(self, session: AsyncSession, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.session = session
        self.max_attempts = max_attempts
        self.riders = RiderRepository(session)
        self.drivers = DriverRepository(session)
        self.rides = RideRepository(session)

    async def dispatch(
        self,
        rider_id: int,
        dropoff_lat: float,
        dropoff_lng: float,
        service_type: ServiceType = ServiceType.STANDARD,
        deposit: int = 0,
    ) -> DispatchResult:
        validate_coordinates(dropoff_lat, dropoff_lng)
        if deposit < 0:
            raise InvalidFareInput("Deposit must be non-negative")

        rider = await self.riders.get_by_id(rider_id)
        if rider is None:
            raise RiderNotFound(f"Rider {rider_id} not found")
        if rider.current_lat is None or rider.current_lng is None:
            raise RiderLocationMissing(f"Rider {rider_id} has no location")

        excluded: set[int] = set()
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            candidates = await self.drivers.get_idle_with_location()
            driver = select_nearest_driver(
                candidates, rider.current_lat, rider.current_lng, exclude=excluded
            )
            if driver is None:
                break

            if await self.drivers.update_if(
                driver.id, DriverStatus.IDLE, DriverStatus.BUSY
            ):
                await self.drivers.reload(driver)
                ride = await self.rides.create_ride(
                    rider_id=rider.id,
                    driver_id=driver.id,
                    pickup_lat=rider.current_lat,
                    pickup_lng=rider.current_lng,
                    dropoff_lat=dropoff_lat,
                    dropoff_lng=dropoff_lng,
                    service_type=ServiceType(service_type),
                    deposit=deposit,
                    rider_snapshot=rider_snapshot(rider),
                    driver_snapshot=driver_snapshot(driver),
                    status=RideStatus.ASSIGNED,
                )
                logger.info(
                    "Ride %s: rider %s dispatched to driver %s (attempt %d)",
                    ride.id, rider.id, driver.id, attempts,
                )
                return DispatchResult(
                    ride=ride,
                    driver=driver,
                    rider=rider,
                    attempts=attempts,
                    message="Driver dispatched",
                )

            logger.info(
                "Lost reservation race for driver %s (attempt %d/%d)",
                driver.id, attempts, self.max_attempts,
            )
            excluded.add(driver.id)

        logger.info("No idle driver for rider %s after %d attempt(s)", rider.id, attempts)
        return DispatchResult(
            rider=rider, attempts=attempts, message="No idle drivers available"
        )
