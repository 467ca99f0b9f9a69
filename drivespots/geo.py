"""Geospatial helpers on a spherical Earth."""
from __future__ import annotations

import math

from . import config
from .models import Coordinate


def destination_point(origin: Coordinate, distance_km: float, bearing_deg: float) -> Coordinate:
    """Great-circle destination from ``origin`` after ``distance_km`` on a bearing."""
    brng = math.radians(bearing_deg)
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lon)
    delta = distance_km / config.EARTH_RADIUS_KM

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(brng)
    phi2 = math.asin(sin_phi2)
    y = math.sin(brng) * math.sin(delta) * math.cos(phi1)
    x = math.cos(delta) - math.sin(phi1) * sin_phi2
    lambda2 = lambda1 + math.atan2(y, x)
    return Coordinate(math.degrees(phi2), math.degrees(lambda2))
