"""Normalized data contracts shared by the pipelines."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import config

TIME = "time"
DISTANCE = "distance"


class InvalidInputError(ValueError):
    pass


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def as_latlng(self) -> str:
        return f"{self.lat},{self.lon}"

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


def validate_coordinate(lat: Any, lon: Any) -> Coordinate:
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InvalidInputError("invalid_coord")
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        raise InvalidInputError("invalid_coord")
    if lat_f < -90 or lat_f > 90 or lon_f < -180 or lon_f > 180:
        raise InvalidInputError("invalid_coord")
    return Coordinate(lat_f, lon_f)


@dataclass(frozen=True)
class Budget:
    """A travel budget: minutes for ``time``, kilometres for ``distance``."""

    kind: str
    value: float

    @classmethod
    def time(cls, minutes: Any) -> "Budget":
        return cls._checked(TIME, minutes, config.MAX_TIME_MINUTES, "invalid_time")

    @classmethod
    def distance(cls, km: Any) -> "Budget":
        return cls._checked(DISTANCE, km, config.MAX_DISTANCE_KM, "invalid_distance")

    @classmethod
    def from_mode(cls, mode: Optional[str], value: Any) -> "Budget":
        if mode == DISTANCE:
            return cls.distance(value)
        if mode in (None, "", TIME):
            return cls.time(value)
        raise InvalidInputError("invalid_mode")

    @classmethod
    def from_fields(cls, time: Any = None, distance: Any = None) -> "Budget":
        has_time = time is not None and time != ""
        has_dist = distance is not None and distance != ""
        if has_time == has_dist:
            raise InvalidInputError("provide_time_or_distance")
        if has_time:
            return cls.time(time)
        return cls.distance(distance)

    @classmethod
    def _checked(cls, kind: str, raw: Any, upper: float, error: str) -> "Budget":
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise InvalidInputError(error)
        if not math.isfinite(value) or value < 1 or value > upper:
            raise InvalidInputError(error)
        return cls(kind, value)

    @property
    def is_time(self) -> bool:
        return self.kind == TIME

    def isoline_range(self) -> Tuple[str, int]:
        if self.is_time:
            return TIME, int(round(self.value * 60))
        return DISTANCE, int(round(self.value * 1000))


@dataclass(frozen=True)
class ToleranceBand:
    low: float
    high: float

    def contains(self, metric: float) -> bool:
        return self.low <= metric <= self.high


@dataclass(frozen=True)
class CandidateMunicipality:
    id: str
    name: str
    location: Coordinate


@dataclass(frozen=True)
class RankedMunicipality:
    candidate: CandidateMunicipality
    metric: float

    @property
    def name(self) -> str:
        return self.candidate.name

    @property
    def location(self) -> Coordinate:
        return self.candidate.location


@dataclass(frozen=True)
class CivicAnchor:
    lat: float
    lon: float
    source: str = "fallback"


@dataclass
class PointOfInterest:
    id: str
    name: Optional[str]
    location: Optional[Coordinate] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    photo_ref: Optional[str] = None
    maps_url: Optional[str] = None
    address: Optional[str] = None
    types: List[str] = field(default_factory=list)
    primary_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or "",
            "lat": self.location.lat if self.location else None,
            "lng": self.location.lon if self.location else None,
            "rating": self.rating,
            "reviews": self.rating_count,
            "photoName": self.photo_ref,
            "mapsUrl": self.maps_url,
            "address": self.address,
        }


@dataclass
class CityGroup:
    municipality: RankedMunicipality
    anchor: CivicAnchor
    spots: List[PointOfInterest] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        city = self.municipality.candidate
        return {
            "city": {
                "id": city.id,
                "name": city.name,
                "lat": city.location.lat,
                "lng": city.location.lon,
                "hallLat": self.anchor.lat,
                "hallLng": self.anchor.lon,
                "metric": self.municipality.metric,
            },
            "spots": [s.to_dict() for s in self.spots],
        }


@dataclass(frozen=True)
class RouteElement:
    status: str
    duration_seconds: Optional[int] = None
    distance_meters: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "OK"


@dataclass
class MunicipalityFeature:
    id: str
    name: str
    geometry: Any
    bbox: Tuple[float, float, float, float]


@dataclass(frozen=True)
class IntersectingMunicipality:
    id: str
    name: str
    centroid: Coordinate
    bbox: Tuple[float, float, float, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "center": self.centroid.to_dict(),
            "bbox": list(self.bbox),
        }


@dataclass(frozen=True)
class Review:
    author: Optional[str]
    rating: Optional[float]
    text: Optional[str]
    time: Optional[str]


@dataclass
class PlaceDetails:
    id: Optional[str]
    name: Optional[str]
    address: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    reviews: List[Review] = field(default_factory=list)
    photo_ref: Optional[str] = None
    maps_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "rating": self.rating,
            "reviewsCount": self.rating_count,
            "reviews": [
                {"author": r.author, "rating": r.rating, "text": r.text, "time": r.time}
                for r in self.reviews
            ],
            "photoName": self.photo_ref,
            "mapsUrl": self.maps_url,
        }
