"""
Ride endpoints
==============

POST /api/v1/rides                  -- dispatch the nearest idle driver
GET  /api/v1/rides/{ride_id}        -- current ride state
POST /api/v1/rides/{ride_id}/accept   -- assigned -> accepted
POST /api/v1/rides/{ride_id}/arrive   -- accepted -> arrived
POST /api/v1/rides/{ride_id}/start    -- arrived  -> ongoing
POST /api/v1/rides/{ride_id}/complete -- ongoing  -> completed (with fare)
POST /api/v1/rides/{ride_id}/cancel   -- cancellation policy, then cancelled
POST /api/v1/rides/{ride_id}/meter    -- tell watching passengers the meter runs

Every state change is committed before it is announced to subscribers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import (
    get_broadcaster,
    get_db,
    get_dispatcher,
    get_lifecycle,
    within_budget,
)
from src.api.middleware import limiter
from src.api.schemas import (
    AcceptRequest,
    CancellationResponse,
    CancelRequest,
    CompleteRequest,
    CompletionResponse,
    DispatchResponse,
    DriverActionRequest,
    FareBreakdownResponse,
    MeterResponse,
    RideCreateRequest,
    RideResponse,
)
from src.config import settings
from src.realtime.broadcaster import LocationBroadcaster
from src.services.dispatcher import RideDispatcher
from src.services.lifecycle import RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])


async def _commit_and_announce(
    db: AsyncSession, broadcaster: LocationBroadcaster, ride
) -> None:
    await within_budget(db.commit())
    broadcaster.publish_ride_status(ride.id, ride.status, ride.driver_id)


@router.post(
    "",
    status_code=201,
    response_model=DispatchResponse,
    summary="Request a ride",
    responses={200: {"description": "No idle driver was available."}},
)
@limiter.limit(settings.rate_limit)
async def request_ride(
    request: Request,
    response: Response,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: RideDispatcher = Depends(get_dispatcher),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    result = await within_budget(
        dispatcher.dispatch(
            body.rider_id,
            body.dropoff_lat,
            body.dropoff_lng,
            service_type=body.service_type,
            deposit=body.deposit,
        )
    )
    if not result.matched:
        response.status_code = 200
        return DispatchResponse(
            result="no_driver_available",
            message=result.message,
            attempts=result.attempts,
        )

    await _commit_and_announce(db, broadcaster, result.ride)
    return DispatchResponse(
        result="dispatched",
        message=result.message,
        attempts=result.attempts,
        ride=result.ride,
        driver=result.driver,
        rider=result.rider,
    )


@router.get("/{ride_id}", response_model=RideResponse, summary="Get a ride")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await within_budget(lifecycle.get_ride(ride_id))


@router.post("/{ride_id}/accept", response_model=RideResponse, summary="Driver accepts")
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: AcceptRequest,
    db: AsyncSession = Depends(get_db),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    ride = await within_budget(lifecycle.accept(ride_id, body.driver_id))
    await _commit_and_announce(db, broadcaster, ride)
    return ride


@router.post(
    "/{ride_id}/arrive",
    response_model=RideResponse,
    summary="Driver reached the pickup point",
)
@limiter.limit(settings.rate_limit)
async def mark_arrived(
    request: Request,
    ride_id: int,
    body: DriverActionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    driver_id = body.driver_id if body else None
    ride = await within_budget(lifecycle.mark_arrived(ride_id, driver_id))
    await _commit_and_announce(db, broadcaster, ride)
    return ride


@router.post("/{ride_id}/start", response_model=RideResponse, summary="Passenger on board")
@limiter.limit(settings.rate_limit)
async def start_ride(
    request: Request,
    ride_id: int,
    body: DriverActionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    driver_id = body.driver_id if body else None
    ride = await within_budget(lifecycle.start(ride_id, driver_id))
    await _commit_and_announce(db, broadcaster, ride)
    return ride


@router.post(
    "/{ride_id}/complete",
    response_model=CompletionResponse,
    summary="Finish the ride and compute the fare",
    description=(
        "Distance defaults to the odometer accumulated from driver samples "
        "(straight-line pickup to dropoff if none arrived); duration defaults "
        "to the minutes since the ride started."
    ),
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: int,
    body: CompleteRequest | None = None,
    db: AsyncSession = Depends(get_db),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    body = body or CompleteRequest()
    result = await within_budget(
        lifecycle.complete(ride_id, body.distance_km, body.duration_min)
    )
    await _commit_and_announce(db, broadcaster, result.ride)
    return CompletionResponse(
        ride=result.ride,
        fare=FareBreakdownResponse.model_validate(result.fare),
        settlement_price=result.settlement_price,
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=CancellationResponse,
    summary="Cancel a ride",
    description=(
        "A rider cancelling after the driver waited past the grace period "
        "owes a fee; the first call answers ``confirm_required`` and nothing "
        "changes until the call is repeated with ``forced: true``."
    ),
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: CancelRequest | None = None,
    db: AsyncSession = Depends(get_db),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    body = body or CancelRequest()
    result = await within_budget(
        lifecycle.cancel(ride_id, body.actor, body.forced, body.reason)
    )
    if not result.cancelled:
        return CancellationResponse(result="confirm_required", fee=result.decision.fee)

    await _commit_and_announce(db, broadcaster, result.ride)
    return CancellationResponse(
        result="cancelled", fee=result.decision.fee, ride=result.ride
    )


@router.post(
    "/{ride_id}/meter",
    response_model=MeterResponse,
    summary="Announce that the meter started",
)
@limiter.limit(settings.rate_limit)
async def start_meter(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycle = Depends(get_lifecycle),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
):
    ride = await within_budget(lifecycle.get_ride(ride_id))
    delivered = broadcaster.start_meter(ride.id, ride.driver_id)
    return MeterResponse(ride_id=ride.id, delivered=delivered)
