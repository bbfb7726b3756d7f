"""
Rider endpoints
===============

POST /api/v1/riders/{rider_id}/location -- share the pickup position
GET  /api/v1/riders/{rider_id}/rides    -- ride history, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_lifecycle, get_tracking, within_budget
from src.api.middleware import limiter
from src.api.schemas import LocationUpdate, RideResponse, RiderResponse
from src.config import settings
from src.services.lifecycle import RideLifecycle
from src.services.tracking import TrackingService

router = APIRouter(prefix="/riders", tags=["riders"])


@router.post(
    "/{rider_id}/location",
    response_model=RiderResponse,
    summary="Update the rider's current location",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    rider_id: int,
    body: LocationUpdate,
    db: AsyncSession = Depends(get_db),
    tracking: TrackingService = Depends(get_tracking),
):
    rider = await within_budget(
        tracking.update_rider_location(rider_id, body.lat, body.lng)
    )
    await within_budget(db.commit())
    return rider


@router.get(
    "/{rider_id}/rides",
    response_model=list[RideResponse],
    summary="Rides requested by this rider",
)
@limiter.limit(settings.rate_limit)
async def list_rides(
    request: Request,
    rider_id: int,
    limit: int = Query(20, ge=1, le=100),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await within_budget(lifecycle.list_rides_for_rider(rider_id, limit))
