"""Thin wrappers over shapely for GeoJSON geometry tests."""
from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

from shapely.errors import ShapelyError
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from .models import Coordinate

logger = logging.getLogger(__name__)


def to_shape(geojson: Dict[str, Any]) -> BaseGeometry:
    """Shapely geometry from a GeoJSON Feature or bare Geometry."""
    if geojson.get("type") == "Feature":
        geojson = geojson.get("geometry") or {}
    return shape(geojson)


def bbox_of(geom: BaseGeometry) -> Tuple[float, float, float, float]:
    min_x, min_y, max_x, max_y = geom.bounds
    return (min_x, min_y, max_x, max_y)


def safe_intersects(a: BaseGeometry, b: BaseGeometry) -> bool:
    try:
        return bool(a.intersects(b))
    except (ShapelyError, ValueError) as exc:
        logger.debug("Intersection test failed: %s", exc)
        return False


def safe_centroid(geom: BaseGeometry) -> Coordinate:
    """Centroid, or a point guaranteed on the surface for degenerate shapes."""
    try:
        point = geom.centroid
        if not point.is_empty:
            return Coordinate(point.y, point.x)
    except (ShapelyError, ValueError) as exc:
        logger.debug("Centroid failed, using surface point: %s", exc)
    point = geom.representative_point()
    return Coordinate(point.y, point.x)
