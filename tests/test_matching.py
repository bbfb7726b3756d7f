"""Unit tests for nearest-driver selection and spatial cells."""

from dataclasses import dataclass
from typing import Optional

import pytest

from src.domain.distance import haversine_km
from src.domain.enums import DriverStatus
from src.domain.matching import (
    area_cells,
    cell_for,
    rank_drivers,
    select_nearest_driver,
)

STATION = (25.0478, 121.5170)


@dataclass
class _Driver:
    id: int
    current_lat: Optional[float]
    current_lng: Optional[float]
    status: DriverStatus = DriverStatus.IDLE


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(25.0, 121.0, 25.0, 121.0) == 0.0

    def test_known_distance(self):
        # Taipei Main Station -> Taipei 101, roughly 5.3 km
        d = haversine_km(*STATION, 25.0330, 121.5654)
        assert 4.8 < d < 5.8

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_symmetric(self):
        d1 = haversine_km(25.0, 121.0, 26.0, 122.0)
        d2 = haversine_km(26.0, 122.0, 25.0, 121.0)
        assert abs(d1 - d2) < 1e-9

    def test_antipodes_do_not_fail(self):
        assert haversine_km(0, 0, 0, 180) == pytest.approx(20015.09, abs=0.1)


class TestSelectNearestDriver:
    def test_picks_nearest(self):
        drivers = [
            _Driver(1, 25.0600, 121.5500),
            _Driver(2, 25.0480, 121.5172),
            _Driver(3, 25.0330, 121.5654),
        ]
        assert select_nearest_driver(drivers, *STATION).id == 2

    def test_equidistant_tie_goes_to_lowest_id(self):
        # same point, listed in descending id order
        drivers = [_Driver(i, 25.0500, 121.5200) for i in (9, 4, 7)]
        for _ in range(5):
            assert select_nearest_driver(drivers, *STATION).id == 4

    def test_skips_busy_offline_and_unlocated(self):
        drivers = [
            _Driver(1, *STATION, status=DriverStatus.BUSY),
            _Driver(2, *STATION, status=DriverStatus.OFFLINE),
            _Driver(3, None, None),
            _Driver(4, 25.10, 121.60),
        ]
        assert select_nearest_driver(drivers, *STATION).id == 4

    def test_exclude(self):
        drivers = [_Driver(1, *STATION), _Driver(2, 25.05, 121.52)]
        assert select_nearest_driver(drivers, *STATION, exclude={1}).id == 2

    def test_none_available(self):
        assert select_nearest_driver([], *STATION) is None
        assert select_nearest_driver([_Driver(1, *STATION)], *STATION, exclude=[1]) is None

    def test_accepts_status_strings(self):
        drivers = [_Driver(1, *STATION, status="idle")]
        assert select_nearest_driver(drivers, *STATION).id == 1


class TestRankDrivers:
    def test_sorted_by_distance_then_id(self):
        drivers = [
            _Driver(5, 25.0500, 121.5200),
            _Driver(2, 25.0500, 121.5200),
            _Driver(1, 25.0900, 121.5600),
        ]
        ranked = rank_drivers(drivers, *STATION)
        assert [d.id for _, d in ranked] == [2, 5, 1]
        assert ranked[0][0] <= ranked[-1][0]

    def test_idle_only_can_be_relaxed(self):
        drivers = [_Driver(1, *STATION, status=DriverStatus.BUSY), _Driver(2, None, None)]
        assert rank_drivers(drivers, *STATION) == []
        assert [d.id for _, d in rank_drivers(drivers, *STATION, idle_only=False)] == [1]


class TestH3Cells:
    def test_returns_string(self):
        cell = cell_for(*STATION, 7)
        assert isinstance(cell, str)
        assert len(cell) > 0

    def test_nearby_points_same_cell(self):
        assert cell_for(*STATION, 7) == cell_for(25.0479, 121.5171, 7)

    def test_distant_points_different_cell(self):
        assert cell_for(*STATION, 7) != cell_for(22.6273, 120.3014, 7)  # Kaohsiung

    def test_area_contains_centre_and_ring(self):
        cells = area_cells(*STATION, resolution=7, ring=1)
        assert cell_for(*STATION, 7) in cells
        assert len(cells) == 7
        assert len(area_cells(*STATION, resolution=7, ring=0)) == 1
