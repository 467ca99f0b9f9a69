"""Isoline routing client and GeoJSON conversion of its polygons."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from . import config
from .cache import TTLCache, make_request_cache_key
from .http import HttpClient, MissingApiKeyError, RequestMetrics, UpstreamError
from .models import Budget, Coordinate

logger = logging.getLogger(__name__)


class IsolineClient:
    def __init__(
        self,
        http_client: HttpClient,
        api_key: Optional[str],
        cache: Optional[TTLCache] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.api_key = api_key
        self.cache = cache
        self.metrics = metrics

    def isoline(self, origin: Coordinate, budget: Budget) -> Dict[str, Any]:
        """Raw isoline payload for the budget (seconds or metres)."""
        if not self.api_key:
            raise MissingApiKeyError("Missing HERE_API_KEY")
        params = build_isoline_params(origin, budget)
        key = make_request_cache_key(config.ISOLINE_URL, "", params)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                if self.metrics is not None:
                    self.metrics.inc_cache_hit("isoline")
                return cached
        if self.metrics is not None:
            self.metrics.inc_network("isoline")
        try:
            response = self.http.get_json(config.ISOLINE_URL, params={**params, "apiKey": self.api_key})
        except UpstreamError:
            if self.metrics is not None:
                self.metrics.inc_failure("isoline")
            raise
        if self.cache is not None:
            self.cache.set(key, response)
        return response


def build_isoline_params(origin: Coordinate, budget: Budget) -> Dict[str, Any]:
    range_type, range_value = budget.isoline_range()
    return {
        "transportMode": config.ISOLINE_TRANSPORT_MODE,
        "origin": origin.as_latlng(),
        "range[type]": range_type,
        "range[values]": str(range_value),
    }


def close_ring(coords: List[Any]) -> List[Any]:
    if not coords:
        return coords
    first = coords[0]
    last = coords[-1]
    if first and last and first[0] == last[0] and first[1] == last[1]:
        return coords
    return [*coords, first]


def _ring_coordinates(ring: Any) -> Optional[List[Any]]:
    if isinstance(ring, dict) and isinstance(ring.get("coordinates"), list):
        return ring["coordinates"]
    return None


def to_feature_collection(raw: Any) -> Dict[str, Any]:
    """Normalize an isoline payload to a GeoJSON FeatureCollection.

    GeoJSON input passes through (a bare Feature or Geometry is wrapped).
    Otherwise each ``isolines[].polygons[]`` entry becomes one Polygon feature
    whose rings are closed, tagged with the isoline's ``range``.
    """
    if not raw:
        return {"type": "FeatureCollection", "features": []}
    kind = raw.get("type") if isinstance(raw, dict) else None
    if kind == "FeatureCollection":
        return raw
    if kind == "Feature":
        return {"type": "FeatureCollection", "features": [raw]}
    if kind in ("Polygon", "MultiPolygon", "GeometryCollection"):
        return {
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "geometry": raw, "properties": {}}],
        }

    features: List[Dict[str, Any]] = []
    isolines = raw.get("isolines") if isinstance(raw, dict) else None
    for iso in isolines if isinstance(isolines, list) else []:
        polygons = iso.get("polygons") if isinstance(iso, dict) else None
        for poly in polygons if isinstance(polygons, list) else []:
            if not isinstance(poly, dict):
                continue
            outer = poly.get("outer")
            outer_coords = _ring_coordinates(outer)
            if outer_coords is None or not outer.get("type"):
                continue
            holes = []
            for inner in poly.get("inner") or []:
                inner_coords = _ring_coordinates(inner)
                if inner_coords is not None:
                    holes.append(close_ring(inner_coords))
            features.append(
                {
                    "type": "Feature",
                    "geometry": {"type": "Polygon", "coordinates": [close_ring(outer_coords), *holes]},
                    "properties": {"range": iso.get("range")},
                }
            )
    if not features:
        logger.warning("Isoline payload produced no polygon features")
    return {"type": "FeatureCollection", "features": features}
