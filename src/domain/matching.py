"""
Nearest-Driver Selection
========================

1. **Candidate filter** -- only ``idle`` drivers with a known position.
2. **Ranking**          -- haversine distance to the rider, ascending.
3. **Tie-break**        -- lowest driver id wins, so equidistant drivers
   are always resolved the same way.

The selection itself is pure; reserving the winner is the dispatcher's
job (a conditional update against the store).  Drivers that lost a
reservation race are passed back in via ``exclude``.

Spatial cells
-------------
H3 hexagons (default resolution 7, ~5.16 km²) tag every driver sample so
passengers can subscribe to "drivers around me" without the broadcaster
computing distances for every event.

Complexity
----------
* ``select_nearest_driver``: O(D) for D candidates.
* ``rank_drivers``:          O(D log D).
* ``area_cells``:            O(k²) cells for ring size k.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol, Sequence

import h3

from .distance import haversine_km
from .enums import DriverStatus


class DriverLike(Protocol):
    id: int
    status: DriverStatus
    current_lat: Optional[float]
    current_lng: Optional[float]


def cell_for(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def area_cells(
    lat: float, lng: float, resolution: int = 7, ring: int = 1
) -> frozenset[str]:
    """The cell containing the point plus *ring* layers of neighbours."""
    return frozenset(h3.grid_disk(cell_for(lat, lng, resolution), ring))


def _has_location(driver: DriverLike) -> bool:
    return driver.current_lat is not None and driver.current_lng is not None


def _is_candidate(driver: DriverLike) -> bool:
    return DriverStatus(driver.status) == DriverStatus.IDLE and _has_location(driver)


def rank_drivers(
    drivers: Iterable[DriverLike],
    lat: float,
    lng: float,
    exclude: Iterable[int] = (),
    idle_only: bool = True,
) -> list[tuple[float, DriverLike]]:
    """Return ``(distance_km, driver)`` pairs, nearest first, ties by id."""
    excluded = set(exclude)
    eligible = _is_candidate if idle_only else _has_location
    ranked = [
        (haversine_km(lat, lng, d.current_lat, d.current_lng), d)
        for d in drivers
        if d.id not in excluded and eligible(d)
    ]
    ranked.sort(key=lambda pair: (pair[0], pair[1].id))
    return ranked


def select_nearest_driver(
    drivers: Sequence[DriverLike],
    lat: float,
    lng: float,
    exclude: Iterable[int] = (),
) -> Optional[DriverLike]:
    """Pick the nearest eligible driver, or ``None`` if there is none."""
    excluded = set(exclude)
    best: Optional[DriverLike] = None
    best_key: Optional[tuple[float, int]] = None
    for driver in drivers:
        if driver.id in excluded or not _is_candidate(driver):
            continue
        key = (
            haversine_km(lat, lng, driver.current_lat, driver.current_lng),
            driver.id,
        )
        if best_key is None or key < best_key:
            best, best_key = driver, key
    return best
