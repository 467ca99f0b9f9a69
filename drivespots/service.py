"""Request surface: validation, result caching and quota around the pipelines."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import config
from .boundaries import MunicipalityBoundaryStore, default_store
from .cache import TTLCache, make_origin_cache_key
from .http import HttpClient, RequestMetrics, RetryPolicy, call_with_retry
from .isochrone import intersecting_municipalities
from .isoline_client import IsolineClient
from .models import Budget, Coordinate, InvalidInputError, PointOfInterest, validate_coordinate
from .pipeline import rating_sort_key, run_discovery, search_municipality_spots
from .places_client import PlacesClient
from .quota import ISOLINE, PLACES, QuotaLimiter, default_limits
from .routes_client import RoutingClient

logger = logging.getLogger(__name__)

_ORIGIN_RE = re.compile(r"^\s*(-?\d+\.?\d*),\s*(-?\d+\.?\d*)\s*$")
_RISKY_CHARS_RE = re.compile(r"[<>\"'`$\\]")
_TYPE_RE = re.compile(r"^[a-z_]+$")


def parse_origin(raw: Optional[str]) -> Coordinate:
    match = _ORIGIN_RE.match(raw or "")
    if not match:
        raise InvalidInputError("invalid_origin")
    return validate_coordinate(match.group(1), match.group(2))


def sanitize_text(raw: Optional[str], max_len: int) -> str:
    return _RISKY_CHARS_RE.sub("", (raw or "").strip())[:max_len]


def sanitize_types(types: Any) -> List[str]:
    items = types if isinstance(types, list) else config.NEARBY_DEFAULT_TYPES
    return [t for t in items if isinstance(t, str) and _TYPE_RE.match(t)]


@dataclass
class Clients:
    places: Any
    routing: Any
    isoline: Any
    metrics: Optional[RequestMetrics] = None


def build_clients(
    google_api_key: Optional[str] = None,
    here_api_key: Optional[str] = None,
    metrics: Optional[RequestMetrics] = None,
) -> Clients:
    http_client = HttpClient(
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_max=config.HTTP_RETRY_MAX,
        backoff_base=config.HTTP_BACKOFF_BASE,
        backoff_max=config.HTTP_BACKOFF_MAX,
    )
    google_key = google_api_key or os.environ.get("GOOGLE_MAPS_API_KEY")
    here_key = here_api_key or os.environ.get("HERE_API_KEY")
    return Clients(
        places=PlacesClient(http_client, google_key, metrics=metrics),
        routing=RoutingClient(http_client, google_key, metrics=metrics),
        isoline=IsolineClient(http_client, here_key, metrics=metrics),
        metrics=metrics,
    )


def build_service() -> "DiscoveryService":
    return DiscoveryService(build_clients(metrics=RequestMetrics()))


class DiscoveryService:
    """Entry points used by the HTTP server and the CLI.

    Every call validates first, then serves from cache, then charges the
    caller's quota, and only then reaches upstream services.
    """

    def __init__(
        self,
        clients: Clients,
        quotas: Optional[QuotaLimiter] = None,
        boundaries: Optional[MunicipalityBoundaryStore] = None,
        search_cache: Optional[TTLCache] = None,
        iso_cache: Optional[TTLCache] = None,
        nearby_cache: Optional[TTLCache] = None,
        details_cache: Optional[TTLCache] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        # An empty TTLCache is falsy.
        self.clients = clients
        self.quotas = quotas if quotas is not None else QuotaLimiter(default_limits())
        self.boundaries = boundaries
        self.search_cache = search_cache if search_cache is not None else TTLCache(config.SEARCH_CACHE_TTL_SEC)
        self.iso_cache = iso_cache if iso_cache is not None else TTLCache(config.ISO_CACHE_TTL_SEC)
        self.nearby_cache = nearby_cache if nearby_cache is not None else TTLCache(config.NEARBY_CACHE_TTL_SEC)
        self.details_cache = details_cache if details_cache is not None else TTLCache(config.DETAILS_CACHE_TTL_SEC)
        self.max_workers = max_workers

    def search(self, params: Dict[str, Any], identity: str) -> Dict[str, Any]:
        municipality = sanitize_text(params.get("municipality"), config.MUNICIPALITY_NAME_MAX_LEN)
        mode = params.get("mode") or "time"
        raw_origin = (params.get("origin") or "").strip()
        raw_value = params.get("value")

        if municipality:
            origin = parse_origin(raw_origin) if raw_origin else None
            has_value = raw_value not in (None, "", "0", 0)
            budget = Budget.from_mode(mode, raw_value) if has_value else None
            if origin is None:
                budget = None
        else:
            if not raw_origin:
                raise InvalidInputError("origin_required")
            origin = parse_origin(raw_origin)
            budget = Budget.from_mode(mode, raw_value)

        key = make_origin_cache_key(
            "search",
            origin,
            budget.kind if budget else "",
            budget.value if budget else None,
            municipality,
        )
        cached = self.search_cache.get(key)
        if cached is not None:
            logger.info("Search cache hit: %s", key)
            return cached

        self.quotas.require(PLACES, identity)

        if municipality:
            spots = search_municipality_spots(
                municipality,
                self.clients.places,
                self.clients.routing,
                origin=origin,
                budget=budget,
            )
            payload: Dict[str, Any] = {"spots": [_spot_row(p) for p in spots]}
        else:
            result = run_discovery(
                origin,
                budget,
                self.clients.places,
                self.clients.routing,
                max_workers=self.max_workers or config.MAX_CONCURRENT_UPSTREAM,
                time_factor=config.TIME_TO_RADIUS_FACTOR,
            )
            payload = result.to_dict()

        self.search_cache.set(key, payload)
        return payload

    def isochrone(self, params: Dict[str, Any], identity: str) -> Dict[str, Any]:
        origin = validate_coordinate(params.get("lat"), params.get("lon"))
        budget = Budget.from_fields(time=params.get("time"), distance=params.get("distance"))

        key = make_origin_cache_key(
            "iso",
            origin,
            budget.value if budget.is_time else None,
            None if budget.is_time else budget.value,
        )
        cached = self.iso_cache.get(key)
        if cached is not None:
            return cached

        self.quotas.require(ISOLINE, identity)

        rounded = Coordinate(round(origin.lat, 4), round(origin.lon, 4))
        store = self.boundaries or default_store()
        result = intersecting_municipalities(rounded, budget, self.clients.isoline, store)
        payload = result.to_dict()
        self.iso_cache.set(key, payload)
        return payload

    def nearby(self, params: Dict[str, Any], identity: str) -> Dict[str, Any]:
        """Spots around a chosen city center, address matches first."""
        city_id = str(params.get("cityId") or "")[: config.CITY_ID_MAX_LEN]
        center = params.get("center")
        if not isinstance(center, dict):
            center = {}
        if not city_id:
            raise InvalidInputError("invalid_params")
        origin = validate_coordinate(center.get("lat"), center.get("lon"))
        types = sanitize_types(params.get("types"))
        city_name = str(params.get("cityName") or "")[: config.CITY_NAME_MAX_LEN]

        key = f"nearby|{city_id}|{','.join(types)}"
        cached = self.nearby_cache.get(key)
        if cached is not None:
            return cached

        self.quotas.require(PLACES, identity)
        found = call_with_retry(
            RetryPolicy(max_attempts=config.NEARBY_MAX_ATTEMPTS),
            self.clients.places.search_nearby,
            origin,
            config.SPOT_RADIUS_M,
            types,
            max_results=config.PLACES_MAX_RESULTS,
            field_mask=config.PLACES_FIELD_MASK_NEARBY,
        )
        unique: Dict[str, PointOfInterest] = {}
        for place in found:
            unique.setdefault(place.id, place)
        results = list(unique.values())
        if city_name:
            results.sort(key=lambda p: (0 if city_name in (p.address or "") else 1, *rating_sort_key(p)))

        payload = {"cityId": city_id, "results": [_nearby_row(p) for p in results]}
        self.nearby_cache.set(key, payload)
        return payload

    def details(self, place_id: Optional[str], identity: str) -> Dict[str, Any]:
        clean_id = sanitize_text(place_id, config.PLACE_ID_MAX_LEN)
        if not clean_id:
            raise InvalidInputError("invalid_id")
        cached = self.details_cache.get(clean_id)
        if cached is not None:
            return cached

        self.quotas.require(PLACES, identity)
        payload = self.clients.places.get_details(clean_id).to_dict()
        self.details_cache.set(clean_id, payload)
        return payload


def _spot_row(place: PointOfInterest) -> Dict[str, Any]:
    row = place.to_dict()
    row.pop("address", None)
    return row


def _nearby_row(place: PointOfInterest) -> Dict[str, Any]:
    return {
        "placeId": place.id,
        "name": place.name or "",
        "location": {
            "lat": place.location.lat if place.location else None,
            "lon": place.location.lon if place.location else None,
        },
        "formattedAddress": place.address or "",
        "primaryType": place.primary_type,
        "rating": place.rating,
        "userRatingsTotal": place.rating_count,
        "googleMapsUrl": place.maps_url,
    }
