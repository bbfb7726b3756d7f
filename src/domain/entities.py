"""
Ride rules shared by the services.

``check_transition`` is the single lifecycle rule
(ASSIGNED -> ACCEPTED -> ARRIVED -> ONGOING -> COMPLETED | CANCELLED);
the lifecycle service checks it before every conditional update.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .enums import RideStatus, RIDE_TRANSITIONS, TERMINAL_STATUSES
from .errors import InvalidCoordinates, InvalidTransition, RideTerminal


def check_transition(current: RideStatus, target: RideStatus) -> None:
    """Raise unless *current* -> *target* is in the transition table."""
    current = RideStatus(current)
    if current in TERMINAL_STATUSES:
        raise RideTerminal(f"Ride is already {current.value}")
    if target not in RIDE_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot transition from {current.value} to {RideStatus(target).value}"
        )


def validate_coordinates(lat: float, lng: float) -> None:
    if lat is None or lng is None:
        raise InvalidCoordinates("Latitude and longitude are required")
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinates("Coordinates must be finite numbers")
    if not -90 <= lat <= 90:
        raise InvalidCoordinates(f"Latitude {lat} is out of range")
    if not -180 <= lng <= 180:
        raise InvalidCoordinates(f"Longitude {lng} is out of range")


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class LocationSample:
    """One driver position report; relayed, never stored as its own row."""

    driver_id: int
    lat: float
    lng: float
    recorded_at: datetime
    ride_id: Optional[int] = None
    cell: Optional[str] = None

