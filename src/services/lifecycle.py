"""
Ride Lifecycle
==============

Owns the ride state machine once a ride exists:

    assigned -> accepted -> arrived -> ongoing -> completed
        \\           \\          \\
         +-----------+----------+--> cancelled

Every transition is a compare-and-swap on the expected current status, so
two requests racing on the same ride cannot both succeed.  The loser gets
``TransitionConflict`` (or ``RideTerminal`` if the winner finished the ride)
and is expected to re-read; nothing here retries.

Completion runs the fare calculator and cancellation runs the policy; both
release the driver back to ``idle``.  Committing the unit of work is left to
the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.cancellation import CancellationDecision, CancellationPolicy
from src.domain.clock import ensure_utc, utcnow
from src.domain.distance import haversine_km
from src.domain.entities import check_transition
from src.domain.enums import (
    Actor,
    DriverStatus,
    RideStatus,
    RoundingMode,
    TERMINAL_STATUSES,
)
from src.domain.errors import (
    DriverMismatch,
    RideNotFound,
    RideTerminal,
    TransitionConflict,
)
from src.domain.pricing import FareBreakdown, FareCalculator
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import (
    DriverRepository,
    RideRepository,
    RiderRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    ride: RideModel
    fare: FareBreakdown
    settlement_price: int


@dataclass
class CancellationResult:
    decision: CancellationDecision
    ride: RideModel

    @property
    def cancelled(self) -> bool:
        return not self.decision.requires_confirmation


class RideLifecycle:
    def __init__(
        self,
        session: AsyncSession,
        fares: Optional[FareCalculator] = None,
        policy: Optional[CancellationPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.fares = fares or FareCalculator()
        self.policy = policy or CancellationPolicy()
        self.clock = clock
        self.rides = RideRepository(session)
        self.drivers = DriverRepository(session)
        self.riders = RiderRepository(session)

    # ── Queries ───────────────────────────────────────────────────────

    async def get_ride(self, ride_id: int) -> RideModel:
        return await self._load(ride_id)

    async def list_rides_for_rider(
        self, rider_id: int, limit: int = 20
    ) -> list[RideModel]:
        return await self.rides.get_for_rider(rider_id, limit)

    async def current_ride_for_driver(self, driver_id: int) -> Optional[RideModel]:
        return await self.rides.get_active_for_driver(driver_id)

    # ── Transitions ───────────────────────────────────────────────────

    async def accept(self, ride_id: int, driver_id: int) -> RideModel:
        ride = await self._load(ride_id)
        self._ensure_not_terminal(ride)
        self._ensure_driver(ride, driver_id)
        return await self._transition(
            ride, RideStatus.ACCEPTED, accepted_at=self.clock()
        )

    async def mark_arrived(
        self, ride_id: int, driver_id: Optional[int] = None
    ) -> RideModel:
        """Stamp ``driver_arrived_at``; a second call never moves it."""
        ride = await self._load(ride_id)
        self._ensure_not_terminal(ride)
        self._ensure_driver(ride, driver_id)
        return await self._transition(
            ride,
            RideStatus.ARRIVED,
            where=(RideModel.driver_arrived_at.is_(None),),
            driver_arrived_at=self.clock(),
        )

    async def start(self, ride_id: int, driver_id: Optional[int] = None) -> RideModel:
        ride = await self._load(ride_id)
        self._ensure_not_terminal(ride)
        self._ensure_driver(ride, driver_id)
        return await self._transition(
            ride, RideStatus.ONGOING, started_at=self.clock()
        )

    async def complete(
        self,
        ride_id: int,
        distance_km: Optional[float] = None,
        duration_min: Optional[float] = None,
    ) -> CompletionResult:
        ride = await self._load(ride_id)
        self._ensure_not_terminal(ride)
        check_transition(ride.status, RideStatus.COMPLETED)

        now = self.clock()
        if distance_km is None:
            distance_km = self._measured_distance(ride)
        if duration_min is None:
            duration_min = self._elapsed_minutes(ride, now)

        fare = self.fares.breakdown(
            distance_km, duration_min, ride.service_type, ride.deposit or 0
        )
        settlement = self.fares.calculate(
            distance_km,
            duration_min,
            ride.service_type,
            ride.deposit or 0,
            rounding=RoundingMode.FLOOR_TEN,
        )

        await self._transition(
            ride,
            RideStatus.COMPLETED,
            final_price=fare.total,
            distance_km=distance_km,
            duration_min=duration_min,
            completed_at=now,
        )
        if ride.driver_id is not None:
            await self._release_driver(ride)
            await self.drivers.credit_trip(ride.driver_id, fare.total)
        await self.riders.count_trip(ride.rider_id)

        logger.info(
            "Ride %s completed: %.2f km, %.1f min, fare %d",
            ride.id, distance_km, duration_min, fare.total,
        )
        return CompletionResult(ride=ride, fare=fare, settlement_price=settlement)

    async def cancel(
        self,
        ride_id: int,
        actor: Actor = Actor.RIDER,
        forced: bool = False,
        reason: Optional[str] = None,
    ) -> CancellationResult:
        """
        Ask the policy first.  ``confirm_required`` leaves the ride untouched
        so the caller can show the fee and retry with ``forced=True``.
        """
        ride = await self._load(ride_id)
        self._ensure_not_terminal(ride)
        check_transition(ride.status, RideStatus.CANCELLED)

        now = self.clock()
        decision = self.policy.evaluate(ride, actor=actor, forced=forced, now=now)
        if decision.requires_confirmation:
            logger.info(
                "Ride %s: cancellation by %s needs confirmation (fee %d)",
                ride.id, Actor(actor).value, decision.fee,
            )
            return CancellationResult(decision=decision, ride=ride)

        await self._transition(
            ride,
            RideStatus.CANCELLED,
            cancellation_fee=decision.fee,
            cancelled_at=now,
            cancelled_by=Actor(actor),
            cancellation_reason=reason,
        )
        if ride.driver_id is not None:
            await self._release_driver(ride)
        return CancellationResult(decision=decision, ride=ride)

    # ── Internals ─────────────────────────────────────────────────────

    async def _load(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound(f"Ride {ride_id} not found")
        return ride

    @staticmethod
    def _ensure_not_terminal(ride: RideModel) -> None:
        if RideStatus(ride.status) in TERMINAL_STATUSES:
            raise RideTerminal(f"Ride {ride.id} is already {RideStatus(ride.status).value}")

    @staticmethod
    def _ensure_driver(ride: RideModel, driver_id: Optional[int]) -> None:
        if driver_id is not None and ride.driver_id != driver_id:
            raise DriverMismatch(
                f"Ride {ride.id} is not assigned to driver {driver_id}"
            )

    async def _transition(
        self, ride: RideModel, target: RideStatus, *, where=(), **values
    ) -> RideModel:
        current = RideStatus(ride.status)
        check_transition(current, target)

        won = await self.rides.update_if(ride.id, current, target, where=where, **values)
        await self.rides.reload(ride)
        if not won:
            if RideStatus(ride.status) in TERMINAL_STATUSES:
                raise RideTerminal(
                    f"Ride {ride.id} is already {RideStatus(ride.status).value}"
                )
            raise TransitionConflict(
                f"Ride {ride.id} changed concurrently "
                f"(expected {current.value}, found {RideStatus(ride.status).value})"
            )

        logger.info("Ride %s: %s -> %s", ride.id, current.value, target.value)
        return ride

    async def _release_driver(self, ride: RideModel) -> None:
        released = await self.drivers.update_if(
            ride.driver_id, DriverStatus.BUSY, DriverStatus.IDLE
        )
        if not released:
            logger.warning(
                "Driver %s was not busy when ride %s ended", ride.driver_id, ride.id
            )

    @staticmethod
    def _measured_distance(ride: RideModel) -> float:
        if ride.distance_km:
            return ride.distance_km
        return haversine_km(
            ride.pickup_lat, ride.pickup_lng, ride.dropoff_lat, ride.dropoff_lng
        )

    @staticmethod
    def _elapsed_minutes(ride: RideModel, now: datetime) -> float:
        started_at = ensure_utc(ride.started_at)
        if started_at is None:
            return 0.0
        return max(0.0, (now - started_at).total_seconds() / 60)
