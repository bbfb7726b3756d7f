"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ASSIGNED, RideStatus.CANCELLED},
    RideStatus.ASSIGNED: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.ONGOING, RideStatus.CANCELLED},
    RideStatus.ONGOING: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

ACTIVE_STATUSES = frozenset(set(RideStatus) - TERMINAL_STATUSES)


def _validate_transition_table() -> None:
    missing = set(RideStatus) - set(RIDE_TRANSITIONS)
    if missing:
        raise RuntimeError(f"Transition table is missing statuses: {sorted(missing)}")
    for source, targets in RIDE_TRANSITIONS.items():
        if source in TERMINAL_STATUSES and targets:
            raise RuntimeError(f"Terminal status {source.value} must not have exits")
        if source in targets:
            raise RuntimeError(f"Self-transition declared for {source.value}")
        for target in targets:
            if not isinstance(target, RideStatus):
                raise RuntimeError(f"Unknown transition target {target!r}")


_validate_transition_table()


class DriverStatus(str, enum.Enum):
    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"


class ServiceType(str, enum.Enum):
    STANDARD = "standard"
    ERRAND = "errand"
    DESIGNATED_DRIVER = "designated_driver"


class Actor(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    SYSTEM = "system"


class RoundingMode(str, enum.Enum):
    NEAREST = "nearest"  # half-up to a whole unit
    FLOOR_TEN = "floor_ten"  # settlement / rebate displays


class SubscriberRole(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"
