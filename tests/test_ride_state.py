"""Unit tests for the ride lifecycle transition rule."""

import pytest

from src.domain.entities import check_transition
from src.domain.enums import (
    RIDE_TRANSITIONS,
    RideStatus,
    TERMINAL_STATUSES,
    _validate_transition_table,
)
from src.domain.errors import InvalidTransition, RideTerminal

HAPPY_PATH = [
    RideStatus.ASSIGNED,
    RideStatus.ACCEPTED,
    RideStatus.ARRIVED,
    RideStatus.ONGOING,
    RideStatus.COMPLETED,
]


class TestCheckTransition:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize("current, target", list(zip(HAPPY_PATH, HAPPY_PATH[1:])))
    def test_happy_path(self, current, target):
        check_transition(current, target)

    def test_requested_to_assigned(self):
        check_transition(RideStatus.REQUESTED, RideStatus.ASSIGNED)

    @pytest.mark.parametrize(
        "status",
        [RideStatus.REQUESTED, RideStatus.ASSIGNED, RideStatus.ACCEPTED, RideStatus.ARRIVED],
    )
    def test_cancellable_before_trip(self, status):
        check_transition(status, RideStatus.CANCELLED)

    def test_accepts_raw_status_values(self):
        check_transition("arrived", RideStatus.ONGOING)

    # ── Invalid transitions ───────────────────────────────────────

    def test_ongoing_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransition):
            check_transition(RideStatus.ONGOING, RideStatus.CANCELLED)

    def test_cannot_skip_arrival(self):
        with pytest.raises(InvalidTransition, match="accepted to ongoing"):
            check_transition(RideStatus.ACCEPTED, RideStatus.ONGOING)

    def test_arrived_twice_is_invalid(self):
        with pytest.raises(InvalidTransition):
            check_transition(RideStatus.ARRIVED, RideStatus.ARRIVED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    @pytest.mark.parametrize("target", list(RideStatus))
    def test_every_transition_out_of_terminal_fails(self, terminal, target):
        with pytest.raises(RideTerminal):
            check_transition(terminal, target)


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(RIDE_TRANSITIONS) == set(RideStatus)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert RIDE_TRANSITIONS[status] == set()

    def test_status_vocabulary(self):
        assert [s.value for s in RideStatus] == [
            "requested",
            "assigned",
            "accepted",
            "arrived",
            "ongoing",
            "completed",
            "cancelled",
        ]

    def test_validation_rejects_terminal_exit(self, monkeypatch):
        broken = {k: set(v) for k, v in RIDE_TRANSITIONS.items()}
        broken[RideStatus.COMPLETED] = {RideStatus.ONGOING}
        monkeypatch.setattr("src.domain.enums.RIDE_TRANSITIONS", broken)
        with pytest.raises(RuntimeError, match="Terminal status"):
            _validate_transition_table()

    def test_validation_rejects_missing_status(self, monkeypatch):
        broken = {k: v for k, v in RIDE_TRANSITIONS.items() if k != RideStatus.ARRIVED}
        monkeypatch.setattr("src.domain.enums.RIDE_TRANSITIONS", broken)
        with pytest.raises(RuntimeError, match="missing"):
            _validate_transition_table()
