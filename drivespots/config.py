"""Project configuration.

Keeps upstream request shapes, pipeline constants and limits centralized here.
Selected values can be overridden from drivespots_config.json or environment
variables.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent


def env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return fallback
    try:
        return int(float(raw))
    except ValueError:
        return fallback


# --- API endpoints ---

PLACES_BASE_URL = "https://places.googleapis.com/v1"
PLACES_TEXT_SEARCH_URL = f"{PLACES_BASE_URL}/places:searchText"
PLACES_NEARBY_SEARCH_URL = f"{PLACES_BASE_URL}/places:searchNearby"
DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
ISOLINE_URL = "https://isoline.router.hereapi.com/v8/isolines"

# --- Field masks ---

PLACES_FIELD_MASK_CITY = "places.id,places.displayName,places.location"
PLACES_FIELD_MASK_ANCHOR = "places.location,places.displayName,places.id"
PLACES_FIELD_MASK_SPOTS = (
    "places.id,places.displayName,places.location,places.rating,places.userRatingCount,"
    "places.photos,places.types,places.googleMapsUri,places.formattedAddress"
)
PLACES_FIELD_MASK_NEARBY = (
    "places.name,places.displayName,places.formattedAddress,places.location,"
    "places.primaryType,places.rating,places.userRatingCount,places.googleMapsUri"
)
PLACES_FIELD_MASK_DETAILS = (
    "id,displayName,formattedAddress,googleMapsUri,rating,userRatingCount,reviews,photos"
)

# --- Places request shape ---

PLACES_LANGUAGE_CODE = "ja"
PLACES_REGION_CODE = "JP"
PLACES_MAX_RESULTS = 20

# --- Sampling ---

TIME_TO_RADIUS_FACTOR = 0.7
SEARCH_RADIUS_MIN_KM = 5
SEARCH_RADIUS_MAX_KM = 500
SINGLE_SAMPLE_MAX_RADIUS_KM = 50
RING_SPACING_KM = 125
SAMPLE_BEARINGS: List[int] = [0, 45, 90, 135, 180, 225, 270, 315]
EARTH_RADIUS_KM = 6371.0

# --- Candidate discovery ---

MUNICIPALITY_TYPE = "locality"
MUNICIPALITY_SEARCH_RADIUS_M = 50000
MAX_CANDIDATE_MUNICIPALITIES = 80
MUNICIPALITY_SEARCH_MAX_ATTEMPTS = 2

# --- Reachability ---

TIME_TOLERANCE_MIN = 15
DISTANCE_TOLERANCE_KM = 10
ROUTING_MAX_DESTINATIONS = 25
MAX_TIME_MINUTES = 300
MAX_DISTANCE_KM = 500
MAX_GROUPS = 8
ROUTING_MODE = "driving"

# --- Civic anchors and spots ---

CIVIC_ANCHOR_QUERY_SUFFIX = "市役所"
CIVIC_ANCHOR_TYPE = "city_hall"
CIVIC_ANCHOR_NEARBY_TYPES: List[str] = ["city_hall", "local_government_office"]
CIVIC_ANCHOR_RADIUS_M = 15000
CIVIC_ANCHOR_MAX_RESULTS = 5
SPOT_TYPE = "tourist_attraction"
SPOT_RADIUS_M = 10000
MUNICIPALITY_SPOTS_QUERY_SUFFIX = "北海道 日本 観光名所"
NEARBY_DEFAULT_TYPES: List[str] = [
    "tourist_attraction",
    "museum",
    "park",
    "art_gallery",
    "zoo",
    "aquarium",
]
NEARBY_MAX_ATTEMPTS = 2
DETAILS_MAX_REVIEWS = 5

# --- Isoline ---

ISOLINE_TRANSPORT_MODE = "car"

# --- Input limits ---

MUNICIPALITY_NAME_MAX_LEN = 60
CITY_ID_MAX_LEN = 80
CITY_NAME_MAX_LEN = 50
PLACE_ID_MAX_LEN = 120
CACHE_KEY_COORD_DECIMALS = 4

# --- Concurrency ---

MAX_CONCURRENT_UPSTREAM = env_int("MAX_CONCURRENT_UPSTREAM", 4)

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 20
HTTP_RETRY_MAX = 1
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Caches ---

SEARCH_CACHE_TTL_SEC = env_int("SEARCH_CACHE_TTL_SEC", 1200)
ISO_CACHE_TTL_SEC = env_int("ISO_CACHE_TTL_SEC", 1800)
NEARBY_CACHE_TTL_SEC = env_int("NEARBY_CACHE_TTL_SEC", 1200)
DETAILS_CACHE_TTL_SEC = env_int("DETAILS_CACHE_TTL_SEC", 3600)
CACHE_SHARDS = 16

# --- Quotas ---

HERE_HOURLY_LIMIT = env_int("HERE_HOURLY_LIMIT", 300)
HERE_DAILY_LIMIT = env_int("HERE_DAILY_LIMIT", 2500)
PLACES_HOURLY_LIMIT = env_int("PLACES_HOURLY_LIMIT", 500)
PLACES_DAILY_LIMIT = env_int("PLACES_DAILY_LIMIT", 5000)

# --- Boundaries ---

MUNICIPALITY_BOUNDARIES_PATH = os.environ.get(
    "MUNICIPALITY_BOUNDARIES_PATH",
    str(_REPO_ROOT / "data" / "admin" / "hokkaido.geojson"),
)

# --- Server ---

DEFAULT_PORT = 8000

_SETTINGS_KEYS: Dict[str, type] = {
    "time_to_radius_factor": float,
    "time_tolerance_min": float,
    "distance_tolerance_km": float,
    "max_groups": int,
    "max_candidate_municipalities": int,
    "max_concurrent_upstream": int,
    "http_timeout_seconds": int,
    "municipality_boundaries_path": str,
    "places_language_code": str,
    "places_region_code": str,
}


def load_settings(path: Optional[str] = None) -> bool:
    """Load overrides from a JSON file.

    Keys are the lower-case names of module-level globals listed in
    _SETTINGS_KEYS. Returns True if the file was loaded, False if not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "drivespots_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()
    for key, caster in _SETTINGS_KEYS.items():
        if key in data and data[key] is not None:
            globals_ref[key.upper()] = caster(data[key])
    return True
