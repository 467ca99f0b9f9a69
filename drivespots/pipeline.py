"""Pipeline orchestration: budget to grouped points of interest."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .http import RetryPolicy, UpstreamError, call_with_retry
from .models import (
    Budget,
    CandidateMunicipality,
    CityGroup,
    CivicAnchor,
    Coordinate,
    PointOfInterest,
    RankedMunicipality,
)
from .reachability import measure_reachable
from .sampling import build_sample_points, search_radius_km

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    groups: List[CityGroup]
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"groups": [g.to_dict() for g in self.groups]}


def run_discovery(
    origin: Coordinate,
    budget: Budget,
    places_client,
    routing_client,
    max_workers: Optional[int] = None,
    time_factor: Optional[float] = None,
) -> DiscoveryResult:
    workers = max(1, max_workers or config.MAX_CONCURRENT_UPSTREAM)

    radius_km = search_radius_km(budget, time_factor)
    samples = build_sample_points(origin, radius_km)
    logger.info("Stage 1: sampling (radius=%.0f km, samples=%s)", radius_km, len(samples))

    logger.info("Stage 2: municipality discovery")
    candidates = discover_candidates(samples, places_client, max_workers=workers)

    logger.info("Stage 3: reachability filter (%s candidates)", len(candidates))
    ranked = rank_reachable(candidates, origin, budget, routing_client, max_workers=workers)

    logger.info("Stage 4: anchors and spots (%s municipalities)", len(ranked))
    groups = build_groups(ranked, places_client, max_workers=workers)

    logger.info("Stage 5: cross-group dedup")
    removed = dedupe_groups(groups)

    summary = {
        "radius_km": radius_km,
        "samples": len(samples),
        "candidates": len(candidates),
        "reachable": len(ranked),
        "groups": len(groups),
        "spots": sum(len(g.spots) for g in groups),
        "duplicates_removed": removed,
    }
    logger.info("Discovery summary: %s", summary)
    return DiscoveryResult(groups=groups, summary=summary)


def discover_groups(
    origin: Coordinate,
    budget: Budget,
    places_client,
    routing_client,
    max_workers: Optional[int] = None,
) -> List[CityGroup]:
    return run_discovery(
        origin, budget, places_client, routing_client, max_workers=max_workers
    ).groups


def search_municipality_spots(
    municipality: str,
    places_client,
    routing_client=None,
    origin: Optional[Coordinate] = None,
    budget: Optional[Budget] = None,
) -> List[PointOfInterest]:
    """Flat spot list for a named municipality.

    With an origin and budget the list is narrowed to the tolerance band and
    ordered by rating, then rating count, both descending.
    """
    query = f"{municipality} {config.MUNICIPALITY_SPOTS_QUERY_SUFFIX}"
    found = places_client.search_text(
        query,
        included_type=config.SPOT_TYPE,
        page_size=config.PLACES_MAX_RESULTS,
        field_mask=config.PLACES_FIELD_MASK_SPOTS,
    )
    candidates = [p for p in found if p.name]
    if origin is None or budget is None or routing_client is None or not candidates:
        return candidates

    reachable = measure_reachable(routing_client, origin, candidates, lambda p: p.id, budget)
    return sorted((p for p, _ in reachable), key=rating_sort_key)


# Stages

def discover_candidates(
    samples: List[Coordinate],
    places_client,
    max_workers: Optional[int] = None,
) -> List[CandidateMunicipality]:
    """Municipalities near the sample points, first seen by name wins.

    Samples are searched in waves of ``max_workers``; results are merged in
    sample order and discovery stops once MAX_CANDIDATE_MUNICIPALITIES names
    are known. A sample that fails after retry is skipped; if all fail the
    last error is raised.
    """
    workers = max(1, max_workers or config.MAX_CONCURRENT_UPSTREAM)
    policy = RetryPolicy(max_attempts=config.MUNICIPALITY_SEARCH_MAX_ATTEMPTS)
    limit = config.MAX_CANDIDATE_MUNICIPALITIES

    def search(point: Coordinate) -> Tuple[Optional[List[PointOfInterest]], Optional[UpstreamError]]:
        try:
            places = call_with_retry(
                policy,
                places_client.search_nearby,
                point,
                config.MUNICIPALITY_SEARCH_RADIUS_M,
                [config.MUNICIPALITY_TYPE],
                max_results=config.PLACES_MAX_RESULTS,
                field_mask=config.PLACES_FIELD_MASK_CITY,
            )
            return places, None
        except UpstreamError as exc:
            return None, exc

    by_name: Dict[str, CandidateMunicipality] = {}
    attempted = 0
    failed = 0
    last_error: Optional[UpstreamError] = None
    with ThreadPoolExecutor(max_workers=workers) as pool:
        for start in range(0, len(samples), workers):
            wave = samples[start : start + workers]
            for point, (places, error) in zip(wave, pool.map(search, wave)):
                attempted += 1
                if error is not None:
                    failed += 1
                    last_error = error
                    logger.warning(
                        "Municipality search failed at %.4f,%.4f: %s", point.lat, point.lon, error
                    )
                    continue
                for place in places or []:
                    if not place.name or place.location is None:
                        continue
                    if place.name not in by_name:
                        by_name[place.name] = CandidateMunicipality(
                            id=place.id, name=place.name, location=place.location
                        )
                if len(by_name) >= limit:
                    break
            if len(by_name) >= limit:
                break

    if attempted and failed == attempted and last_error is not None:
        raise last_error
    return list(by_name.values())


def rank_reachable(
    candidates: List[CandidateMunicipality],
    origin: Coordinate,
    budget: Budget,
    routing_client,
    max_workers: Optional[int] = None,
) -> List[RankedMunicipality]:
    if not candidates:
        return []
    reachable = measure_reachable(
        routing_client,
        origin,
        candidates,
        lambda c: c.location,
        budget,
        max_workers=max_workers,
    )
    ordered = sorted(reachable, key=lambda pair: pair[1])

    ranked: List[RankedMunicipality] = []
    seen = set()
    for candidate, metric in ordered:
        if not candidate.name or candidate.name in seen:
            continue
        seen.add(candidate.name)
        ranked.append(RankedMunicipality(candidate=candidate, metric=metric))
        if len(ranked) >= config.MAX_GROUPS:
            break
    return ranked


def resolve_anchor(city: CandidateMunicipality, places_client) -> CivicAnchor:
    """City hall location, else a nearby government office, else the city itself."""
    try:
        halls = places_client.search_text(
            f"{city.name} {config.CIVIC_ANCHOR_QUERY_SUFFIX}",
            included_type=config.CIVIC_ANCHOR_TYPE,
            page_size=1,
            field_mask=config.PLACES_FIELD_MASK_ANCHOR,
        )
        hall = halls[0] if halls else None
        if hall is not None and hall.location is not None:
            return CivicAnchor(hall.location.lat, hall.location.lon, "text_search")

        offices = places_client.search_nearby(
            city.location,
            config.CIVIC_ANCHOR_RADIUS_M,
            config.CIVIC_ANCHOR_NEARBY_TYPES,
            max_results=config.CIVIC_ANCHOR_MAX_RESULTS,
            field_mask=config.PLACES_FIELD_MASK_ANCHOR,
        )
        office = offices[0] if offices else None
        if office is not None and office.location is not None:
            return CivicAnchor(office.location.lat, office.location.lon, "nearby_search")
    except UpstreamError as exc:
        logger.warning("Civic anchor lookup failed for %s: %s", city.name, exc)
    return CivicAnchor(city.location.lat, city.location.lon, "fallback")


def fetch_spots(anchor: CivicAnchor, places_client) -> List[PointOfInterest]:
    found = places_client.search_nearby(
        Coordinate(anchor.lat, anchor.lon),
        config.SPOT_RADIUS_M,
        [config.SPOT_TYPE],
        max_results=config.PLACES_MAX_RESULTS,
        field_mask=config.PLACES_FIELD_MASK_SPOTS,
    )
    return [p for p in found if p.name]


def build_group(city: RankedMunicipality, places_client) -> CityGroup:
    anchor = resolve_anchor(city.candidate, places_client)
    try:
        spots = fetch_spots(anchor, places_client)
    except UpstreamError as exc:
        logger.warning("Spot search failed for %s: %s", city.name, exc)
        spots = []
    return CityGroup(municipality=city, anchor=anchor, spots=spots)


def build_groups(
    ranked: List[RankedMunicipality],
    places_client,
    max_workers: Optional[int] = None,
) -> List[CityGroup]:
    if not ranked:
        return []
    workers = max(1, min(max_workers or config.MAX_CONCURRENT_UPSTREAM, len(ranked)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda city: build_group(city, places_client), ranked))


# Helpers

def dedupe_groups(groups: List[CityGroup]) -> int:
    """Keep each spot id in exactly one group; returns the number of removals.

    The owner is the first group whose municipality name appears in the spot's
    address, or the first group containing the spot when there is no usable
    address or no name matches.
    """
    by_spot: Dict[str, List[int]] = {}
    for gi, group in enumerate(groups):
        for spot in group.spots:
            indices = by_spot.setdefault(spot.id, [])
            if gi not in indices:
                indices.append(gi)

    removed = 0
    for spot_id, indices in by_spot.items():
        if len(indices) < 2:
            continue
        address = _first_address(groups, indices, spot_id)
        preferred = indices[0]
        if address:
            for gi in indices:
                name = groups[gi].municipality.name
                if name and name in address:
                    preferred = gi
                    break
        for gi in indices:
            if gi == preferred:
                continue
            before = len(groups[gi].spots)
            groups[gi].spots = [s for s in groups[gi].spots if s.id != spot_id]
            removed += before - len(groups[gi].spots)
    return removed


def _first_address(groups: List[CityGroup], indices: List[int], spot_id: str) -> Optional[str]:
    for gi in indices:
        for spot in groups[gi].spots:
            if spot.id == spot_id and spot.address:
                return spot.address
    return None


def rating_sort_key(place: PointOfInterest) -> Tuple[float, int]:
    return (-safe_float(place.rating), -safe_int(place.rating_count))


def safe_int(value: Any) -> int:
    try:
        return int(value)
    except Exception:
        return 0


def safe_float(value: Any) -> float:
    try:
        return float(value)
    except Exception:
        return 0.0
