"""
Great-circle distances on a spherical earth (radius 6371 km).

Drivers are ranked by straight-line distance, not by road distance; a
routing-engine client could replace this module without touching the
dispatcher.
"""

from __future__ import annotations

import math
EARTH_RADIUS_KM = 6_371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in **km** between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlambda = math.radians(lng2 - lng1) / 2

    h = math.sin(half_dphi) ** 2 + (
        math.cos(phi1) * math.cos(phi2) * math.sin(half_dlambda) ** 2
    )
    # clamp: rounding can push h a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))
