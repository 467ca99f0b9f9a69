"""Ring sampling of probe points around an origin."""
from __future__ import annotations

import math
from typing import List, Optional

from . import config
from .geo import destination_point
from .models import Budget, Coordinate


def search_radius_km(budget: Budget, time_factor: Optional[float] = None) -> float:
    """Straight-line reach used to size the sampling pattern.

    Distance budgets map directly. Time budgets use ``minutes * factor``
    rounded and clamped to [SEARCH_RADIUS_MIN_KM, SEARCH_RADIUS_MAX_KM].
    """
    if not budget.is_time:
        return float(budget.value)
    factor = config.TIME_TO_RADIUS_FACTOR if time_factor is None else time_factor
    # Half-up rounding, not round-half-even.
    approx = math.floor(budget.value * factor + 0.5)
    return float(min(max(approx, config.SEARCH_RADIUS_MIN_KM), config.SEARCH_RADIUS_MAX_KM))


def ring_count(radius_km: float) -> int:
    if radius_km <= config.SINGLE_SAMPLE_MAX_RADIUS_KM:
        return 0
    return max(1, math.ceil(radius_km / config.RING_SPACING_KM))


def build_sample_points(origin: Coordinate, radius_km: float) -> List[Coordinate]:
    """Origin first, then each ring outward at every bearing in SAMPLE_BEARINGS."""
    points = [origin]
    rings = ring_count(radius_km)
    if rings == 0:
        return points
    ring_step = radius_km / rings
    for r in range(1, rings + 1):
        dist = r * ring_step
        for bearing in config.SAMPLE_BEARINGS:
            points.append(destination_point(origin, dist, bearing))
    return points
