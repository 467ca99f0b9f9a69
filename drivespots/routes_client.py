"""Distance Matrix client with response caching and parsing."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from . import config
from .cache import TTLCache, make_request_cache_key
from .http import HttpClient, MissingApiKeyError, RequestMetrics, UpstreamError
from .models import Coordinate, RouteElement

Destination = Union[Coordinate, str]


class RoutingClient:
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

    def distance_matrix(
        self, origin: Coordinate, destinations: Sequence[Destination]
    ) -> List[RouteElement]:
        """Drive metrics from ``origin`` to each destination, in input order.

        Destinations are coordinates or place ids. Callers chunk to at most
        ROUTING_MAX_DESTINATIONS per call.
        """
        if not destinations:
            return []
        if len(destinations) > config.ROUTING_MAX_DESTINATIONS:
            raise ValueError(
                f"At most {config.ROUTING_MAX_DESTINATIONS} destinations per call, "
                f"got {len(destinations)}"
            )
        if not self.api_key:
            raise MissingApiKeyError("Missing GOOGLE_MAPS_API_KEY environment variable")

        params = build_distance_matrix_params(origin, destinations)
        key = make_request_cache_key(config.DISTANCE_MATRIX_URL, "", params)
        response = self.cache.get(key) if self.cache is not None else None
        if response is not None:
            if self.metrics is not None:
                self.metrics.inc_cache_hit("routes")
        else:
            if self.metrics is not None:
                self.metrics.inc_network("routes")
            try:
                response = self.http.get_json(
                    config.DISTANCE_MATRIX_URL, params={**params, "key": self.api_key}
                )
                check_matrix_status(response)
            except UpstreamError:
                if self.metrics is not None:
                    self.metrics.inc_failure("routes")
                raise
            if self.cache is not None:
                self.cache.set(key, response)
        return parse_distance_matrix(response, len(destinations))


def format_destination(dest: Destination) -> str:
    if isinstance(dest, Coordinate):
        return dest.as_latlng()
    return f"place_id:{dest}"


def build_distance_matrix_params(
    origin: Coordinate, destinations: Sequence[Destination]
) -> Dict[str, Any]:
    return {
        "origins": origin.as_latlng(),
        "destinations": "|".join(format_destination(d) for d in destinations),
        "mode": config.ROUTING_MODE,
        "language": config.PLACES_LANGUAGE_CODE,
    }


def check_matrix_status(response: Dict[str, Any]) -> None:
    status = response.get("status")
    if status is not None and status != "OK":
        message = response.get("error_message") or status
        raise UpstreamError(200, str(message), config.DISTANCE_MATRIX_URL)


def _value(raw: Any) -> Optional[int]:
    if isinstance(raw, dict):
        raw = raw.get("value")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def parse_distance_matrix(response: Dict[str, Any], expected: int) -> List[RouteElement]:
    """One RouteElement per requested destination; missing elements are NOT_FOUND."""
    rows = response.get("rows") or []
    elements = (rows[0].get("elements") if rows else None) or []
    parsed: List[RouteElement] = []
    for idx in range(expected):
        el = elements[idx] if idx < len(elements) else None
        if not isinstance(el, dict):
            parsed.append(RouteElement(status="NOT_FOUND"))
            continue
        parsed.append(
            RouteElement(
                status=el.get("status") or "UNKNOWN",
                duration_seconds=_value(el.get("duration")),
                distance_meters=_value(el.get("distance")),
            )
        )
    return parsed
