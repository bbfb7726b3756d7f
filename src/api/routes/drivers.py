"""
Driver endpoints
================

POST /api/v1/drivers/{driver_id}/location     -- report a position sample
POST /api/v1/drivers/{driver_id}/status       -- go idle (online) / offline
GET  /api/v1/drivers/nearby?lat=&lng=         -- map listing, nearest first
GET  /api/v1/drivers/{driver_id}/current-ride -- the driver's active ride
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_broadcaster,
    get_db,
    get_lifecycle,
    get_tracking,
    within_budget,
)
from src.api.middleware import limiter
from src.api.schemas import (
    DriverResponse,
    DriverStatusUpdate,
    LocationAck,
    LocationUpdate,
    NearbyDriverResponse,
    RideResponse,
)
from src.config import settings
from src.domain.enums import DriverStatus
from src.realtime.broadcaster import LocationBroadcaster
from src.services.lifecycle import RideLifecycle
from src.services.tracking import TrackingService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/nearby",
    response_model=list[NearbyDriverResponse],
    summary="Drivers around a point",
)
@limiter.limit(settings.rate_limit)
async def nearby_drivers(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(5.0, gt=0, le=50),
    limit: int = Query(20, ge=1, le=100),
    idle_only: bool = True,
    tracking: TrackingService = Depends(get_tracking),
):
    ranked = await within_budget(
        tracking.find_nearby_drivers(lat, lng, radius_km, limit, idle_only)
    )
    return [
        NearbyDriverResponse(
            **DriverResponse.model_validate(driver).model_dump(),
            distance_km=round(distance, 3),
        )
        for distance, driver in ranked
    ]


@router.post(
    "/{driver_id}/location",
    response_model=LocationAck,
    summary="Report the driver's position",
    description=(
        "Stores the latest position and relays it to passengers watching "
        "this driver, its ride or its area.  Delivery is best effort."
    ),
)
@limiter.limit(settings.rate_limit)
async def report_location(
    request: Request,
    driver_id: int,
    body: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    tracking: TrackingService = Depends(get_tracking),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    sample = await within_budget(
        tracking.report_driver_location(driver_id, body.lat, body.lng, body.recorded_at)
    )
    await within_budget(db.commit())
    delivered = broadcaster.publish_location(sample)
    return LocationAck(
        driver_id=driver_id, ride_id=sample.ride_id, cell=sample.cell, delivered=delivered
    )


@router.post(
    "/{driver_id}/status",
    response_model=DriverResponse,
    summary="Go online (idle) or offline",
)
@limiter.limit(settings.rate_limit)
async def set_status(
    request: Request,
    driver_id: int,
    body: DriverStatusUpdate,
    db: AsyncSession = Depends(get_db),
    tracking: TrackingService = Depends(get_tracking),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    driver = await within_budget(tracking.set_driver_availability(driver_id, body.status))
    await within_budget(db.commit())
    if body.status == DriverStatus.OFFLINE:
        broadcaster.forget_driver(driver_id)
    return driver


@router.get(
    "/{driver_id}/current-ride",
    response_model=Optional[RideResponse],
    summary="The driver's active ride, if any",
)
@limiter.limit(settings.rate_limit)
async def current_ride(
    request: Request,
    driver_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await within_budget(lifecycle.current_ride_for_driver(driver_id))
