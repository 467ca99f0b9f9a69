"""Isochrone polygon to intersecting municipalities."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from shapely.errors import ShapelyError

from .boundaries import MunicipalityBoundaryStore
from .geometry import safe_centroid, safe_intersects, to_shape
from .isoline_client import to_feature_collection
from .models import Budget, Coordinate, IntersectingMunicipality

logger = logging.getLogger(__name__)


@dataclass
class IsochroneResult:
    region: Dict[str, Any]
    municipalities: List[IntersectingMunicipality]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iso": self.region,
            "cities": [m.to_dict() for m in self.municipalities],
        }


def intersect_region(
    region: Dict[str, Any], store: MunicipalityBoundaryStore
) -> List[IntersectingMunicipality]:
    shapes = []
    for feature in region.get("features") or []:
        try:
            shapes.append(to_shape(feature))
        except (ShapelyError, ValueError, TypeError, AttributeError, KeyError) as exc:
            logger.warning("Skipping malformed isoline feature: %s", exc)

    result: List[IntersectingMunicipality] = []
    for city in store.all_municipalities():
        if not any(safe_intersects(city.geometry, s) for s in shapes):
            continue
        result.append(
            IntersectingMunicipality(
                id=city.id,
                name=city.name,
                centroid=safe_centroid(city.geometry),
                bbox=city.bbox,
            )
        )
    return result


def intersecting_municipalities(
    origin: Coordinate,
    budget: Budget,
    isoline_client,
    store: MunicipalityBoundaryStore,
) -> IsochroneResult:
    raw = isoline_client.isoline(origin, budget)
    region = to_feature_collection(raw)
    if not isinstance(region.get("features"), list):
        region = {"type": "FeatureCollection", "features": []}
    municipalities = intersect_region(region, store)
    logger.info(
        "Isochrone: %s features, %s intersecting municipalities",
        len(region["features"]),
        len(municipalities),
    )
    return IsochroneResult(region=region, municipalities=municipalities)
