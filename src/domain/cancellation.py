"""
Cancellation Policy
===================

A rider who cancels after the driver has been waiting at the pickup for
longer than the grace period owes a flat fee.  Because that is a charge,
the first attempt only asks for confirmation; the caller re-invokes with
``forced=True`` once the rider agrees.

    fee applies  = actor is rider
                   and status in {assigned, accepted, arrived}
                   and driver_arrived_at is set
                   and now - driver_arrived_at > grace period

    fee applies, not forced -> CONFIRM_REQUIRED(fee)
    fee applies, forced     -> CANCELLED(fee)
    otherwise               -> CANCELLED(0)

Pure: no I/O, safe to call concurrently.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from .clock import ensure_utc, utcnow
from .enums import Actor, RideStatus


FEE_ELIGIBLE_STATUSES = frozenset(
    {RideStatus.ASSIGNED, RideStatus.ACCEPTED, RideStatus.ARRIVED}
)


class CancellableRide(Protocol):
    status: RideStatus
    driver_arrived_at: Optional[datetime]


class CancellationOutcome(str, enum.Enum):
    CONFIRM_REQUIRED = "confirm_required"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CancellationDecision:
    outcome: CancellationOutcome
    fee: int = 0

    @property
    def requires_confirmation(self) -> bool:
        return self.outcome == CancellationOutcome.CONFIRM_REQUIRED


class CancellationPolicy:
    def __init__(self, grace_period: timedelta = timedelta(minutes=3), fee: int = 100):
        self.grace_period = grace_period
        self.fee = fee

    @classmethod
    def from_settings(cls, settings) -> "CancellationPolicy":
        return cls(
            grace_period=timedelta(seconds=settings.cancellation_grace_seconds),
            fee=settings.cancellation_fee,
        )

    def waited_too_long(
        self, ride: CancellableRide, now: Optional[datetime] = None
    ) -> bool:
        arrived_at = ensure_utc(ride.driver_arrived_at)
        if arrived_at is None:
            return False
        now = now or utcnow()
        return now - arrived_at > self.grace_period

    def evaluate(
        self,
        ride: CancellableRide,
        actor: Actor = Actor.RIDER,
        forced: bool = False,
        now: Optional[datetime] = None,
    ) -> CancellationDecision:
        fee_applies = (
            Actor(actor) == Actor.RIDER
            and RideStatus(ride.status) in FEE_ELIGIBLE_STATUSES
            and self.waited_too_long(ride, now)
        )
        if not fee_applies:
            return CancellationDecision(CancellationOutcome.CANCELLED, 0)
        if not forced:
            return CancellationDecision(CancellationOutcome.CONFIRM_REQUIRED, self.fee)
        return CancellationDecision(CancellationOutcome.CANCELLED, self.fee)
