"""Places API client with response caching and normalization."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from . import config
from .cache import TTLCache, make_request_cache_key
from .http import HttpClient, MissingApiKeyError, RequestMetrics, UpstreamError
from .models import Coordinate, PlaceDetails, PointOfInterest, Review


class PlacesClient:
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

    def search_nearby(
        self,
        center: Coordinate,
        radius_m: int,
        included_types: List[str],
        max_results: int = config.PLACES_MAX_RESULTS,
        field_mask: str = config.PLACES_FIELD_MASK_SPOTS,
    ) -> List[PointOfInterest]:
        body = build_nearby_search_body(center, radius_m, included_types, max_results)
        response = self._post(config.PLACES_NEARBY_SEARCH_URL, body, field_mask)
        return parse_places_response(response)

    def search_text(
        self,
        query: str,
        included_type: Optional[str] = None,
        page_size: Optional[int] = None,
        field_mask: str = config.PLACES_FIELD_MASK_SPOTS,
    ) -> List[PointOfInterest]:
        body = build_text_search_body(query, included_type, page_size)
        response = self._post(config.PLACES_TEXT_SEARCH_URL, body, field_mask)
        return parse_places_response(response)

    def get_details(self, place_id: str) -> PlaceDetails:
        url = f"{config.PLACES_BASE_URL}/places/{place_id}"
        key = make_request_cache_key(url, config.PLACES_FIELD_MASK_DETAILS, {})
        response = self._cached(key)
        if response is None:
            self._count_network()
            headers = self._headers(config.PLACES_FIELD_MASK_DETAILS)
            try:
                response = self.http.get_json(url, headers=headers)
            except UpstreamError:
                self._count_failure()
                raise
            self._store(key, response)
        return parse_place_details(response)

    def _post(self, url: str, body: Dict[str, Any], field_mask: str) -> Dict[str, Any]:
        key = make_request_cache_key(url, field_mask, body)
        response = self._cached(key)
        if response is not None:
            return response
        self._count_network()
        headers = self._headers(field_mask)
        try:
            response = self.http.post_json(url, body, headers=headers)
        except UpstreamError:
            self._count_failure()
            raise
        self._store(key, response)
        return response

    def _headers(self, field_mask: str) -> Dict[str, str]:
        if not self.api_key:
            raise MissingApiKeyError("Missing GOOGLE_MAPS_API_KEY environment variable")
        return {"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": field_mask}

    def _cached(self, key: str) -> Optional[Dict[str, Any]]:
        if self.cache is None:
            return None
        cached = self.cache.get(key)
        if cached is not None and self.metrics is not None:
            self.metrics.inc_cache_hit("places")
        return cached

    def _store(self, key: str, response: Dict[str, Any]) -> None:
        if self.cache is not None:
            self.cache.set(key, response)

    def _count_network(self) -> None:
        if self.metrics is not None:
            self.metrics.inc_network("places")

    def _count_failure(self) -> None:
        if self.metrics is not None:
            self.metrics.inc_failure("places")


def build_text_search_body(
    query: str,
    included_type: Optional[str],
    page_size: Optional[int],
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "textQuery": query,
        "languageCode": config.PLACES_LANGUAGE_CODE,
        "regionCode": config.PLACES_REGION_CODE,
    }
    if page_size is not None:
        body["pageSize"] = int(page_size)
    if included_type:
        body["includedType"] = included_type
    return body


def build_nearby_search_body(
    center: Coordinate,
    radius_m: int,
    included_types: List[str],
    max_results: int,
) -> Dict[str, Any]:
    return {
        "languageCode": config.PLACES_LANGUAGE_CODE,
        "maxResultCount": int(max_results),
        "includedTypes": list(included_types),
        "locationRestriction": {
            "circle": {
                "center": {"latitude": center.lat, "longitude": center.lon},
                "radius": int(radius_m),
            }
        },
    }


# Adapter/mapper for Places response fields

def _display_name(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        return raw.get("text") or raw.get("value")
    return raw


def _place_id(p: Dict[str, Any]) -> Optional[str]:
    place_id = p.get("id") or p.get("placeId")
    if place_id:
        return place_id
    resource = p.get("name") or ""
    if isinstance(resource, str) and resource.startswith("places/"):
        return resource.split("/")[-1] or None
    return None


def _location(p: Dict[str, Any]) -> Optional[Coordinate]:
    location = p.get("location") or p.get("latLng") or {}
    lat = location.get("latitude", location.get("lat"))
    lon = location.get("longitude", location.get("lng", location.get("lon")))
    if lat is None or lon is None:
        return None
    return Coordinate(float(lat), float(lon))


def _first_photo(p: Dict[str, Any]) -> Optional[str]:
    photos = p.get("photos") or []
    if photos and isinstance(photos[0], dict):
        return photos[0].get("name") or None
    return None


def parse_places_response(response: Dict[str, Any]) -> List[PointOfInterest]:
    places = response.get("places") or []
    parsed: List[PointOfInterest] = []
    for p in places:
        place_id = _place_id(p)
        if not place_id:
            continue
        rating_count = p.get("userRatingCount")
        if rating_count is None:
            rating_count = p.get("userRatingsTotal", p.get("user_ratings_total"))
        rating = p.get("rating")
        parsed.append(
            PointOfInterest(
                id=place_id,
                name=_display_name(p.get("displayName")),
                location=_location(p),
                rating=float(rating) if rating is not None else None,
                rating_count=int(rating_count) if rating_count is not None else None,
                photo_ref=_first_photo(p),
                maps_url=p.get("googleMapsUri"),
                address=p.get("formattedAddress"),
                types=list(p.get("types") or []),
                primary_type=p.get("primaryType"),
            )
        )
    return parsed


def parse_place_details(response: Dict[str, Any]) -> PlaceDetails:
    reviews = []
    for r in (response.get("reviews") or [])[: config.DETAILS_MAX_REVIEWS]:
        reviews.append(
            Review(
                author=(r.get("authorAttribution") or {}).get("displayName"),
                rating=r.get("rating"),
                text=_display_name(r.get("text")),
                time=r.get("publishTime"),
            )
        )
    return PlaceDetails(
        id=response.get("id"),
        name=_display_name(response.get("displayName")),
        address=response.get("formattedAddress"),
        rating=response.get("rating"),
        rating_count=response.get("userRatingCount"),
        reviews=reviews,
        photo_ref=_first_photo(response),
        maps_url=response.get("googleMapsUri"),
    )
