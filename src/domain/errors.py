"""
Error taxonomy for the dispatch core.

Every error carries a stable ``code`` so the request layer can tell
"no such ride" from "ride already finished" without parsing messages.

* ``InvalidInput`` -- rejected synchronously, never retried.
* ``NotFound``     -- referenced rider / driver / ride does not exist.
* ``Conflict``     -- the request clashes with current state; surfaced
  immediately and never retried by this core.

Business-rule negatives (no driver available, confirmation required) are
*not* exceptions; see ``DispatchResult`` and ``CancellationDecision``.
"""


class RideServiceError(Exception):
    """Base class for all domain errors."""

    code = "ride_service_error"


# ── Validation ────────────────────────────────────────────────────────


class InvalidInput(RideServiceError):
    code = "invalid_input"


class InvalidCoordinates(InvalidInput):
    code = "invalid_coordinates"


class InvalidFareInput(InvalidInput):
    code = "invalid_fare_input"


class InvalidDriverStatus(InvalidInput):
    code = "invalid_driver_status"


class RiderLocationMissing(InvalidInput):
    """Raised when a ride is requested before the rider shared a location."""

    code = "rider_location_missing"


# ── Not found ─────────────────────────────────────────────────────────


class NotFound(RideServiceError):
    code = "not_found"


class RiderNotFound(NotFound):
    code = "rider_not_found"


class DriverNotFound(NotFound):
    code = "driver_not_found"


class RideNotFound(NotFound):
    code = "ride_not_found"


# ── Conflicts ─────────────────────────────────────────────────────────


class Conflict(RideServiceError):
    code = "conflict"


class DriverMismatch(Conflict):
    """Raised when a driver acts on a ride assigned to someone else."""

    code = "driver_mismatch"


class RideTerminal(Conflict):
    """Raised on any transition attempted from completed / cancelled."""

    code = "ride_terminal"


class InvalidTransition(Conflict):
    """Raised when a ride status change violates the state machine."""

    code = "invalid_transition"


class TransitionConflict(Conflict):
    """Raised when a concurrent request changed the ride first."""

    code = "transition_conflict"


class DriverBusy(Conflict):
    code = "driver_busy"
