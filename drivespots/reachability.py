"""Tolerance-band filtering of candidates by real driving cost."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from . import config
from .models import Budget, Coordinate, RouteElement, ToleranceBand
from .routes_client import Destination

logger = logging.getLogger(__name__)

T = TypeVar("T")


def tolerance_band(budget: Budget) -> ToleranceBand:
    tolerance = config.TIME_TOLERANCE_MIN if budget.is_time else config.DISTANCE_TOLERANCE_KM
    return ToleranceBand(low=max(0.0, budget.value - tolerance), high=budget.value + tolerance)


def element_metric(element: RouteElement, budget: Budget) -> Optional[float]:
    """Drive minutes or km for the budget kind; None when the element is unusable."""
    if not element.ok:
        return None
    if budget.is_time:
        return (element.duration_seconds or 0) / 60.0
    return (element.distance_meters or 0) / 1000.0


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


def measure_reachable(
    routing_client,
    origin: Coordinate,
    candidates: Sequence[T],
    destination_of: Callable[[T], Destination],
    budget: Budget,
    max_workers: Optional[int] = None,
) -> List[Tuple[T, float]]:
    """Candidates whose drive metric falls in the tolerance band, in input order.

    Destinations go out in chunks of ROUTING_MAX_DESTINATIONS. Elements with a
    non-OK status are dropped. A failed chunk is re-raised once every chunk
    has finished.
    """
    if not candidates:
        return []
    chunks = chunked(list(candidates), config.ROUTING_MAX_DESTINATIONS)
    workers = max(1, min(max_workers or config.MAX_CONCURRENT_UPSTREAM, len(chunks)))

    def run_chunk(chunk: Sequence[T]):
        try:
            return routing_client.distance_matrix(origin, [destination_of(c) for c in chunk]), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(run_chunk, chunks))

    band = tolerance_band(budget)
    accepted: List[Tuple[T, float]] = []
    dropped = 0
    for chunk, (elements, error) in zip(chunks, outcomes):
        if error is not None:
            raise error
        for candidate, element in zip(chunk, elements):
            metric = element_metric(element, budget)
            if metric is None:
                dropped += 1
                continue
            if band.contains(metric):
                accepted.append((candidate, metric))
    logger.info(
        "Reachability: %s candidates, %s accepted, %s without route (band %.1f-%.1f)",
        len(candidates),
        len(accepted),
        dropped,
        band.low,
        band.high,
    )
    return accepted
