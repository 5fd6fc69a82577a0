"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_between(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Kilometres between two (lat, lon) tuples."""
    return haversine_km(a[0], a[1], b[0], b[1])


def path_length_km(points: Sequence[tuple[float, float]]) -> float:
    """Total great-circle length of a polyline given as (lat, lon) tuples."""

    return sum(haversine_between(points[i - 1], points[i]) for i in range(1, len(points)))
