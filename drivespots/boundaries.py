"""Static municipality boundary dataset, loaded once per process."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from shapely.errors import ShapelyError

from . import config
from .geometry import bbox_of, to_shape
from .models import MunicipalityFeature

logger = logging.getLogger(__name__)


class MunicipalityBoundaryStore:
    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._features: Optional[List[MunicipalityFeature]] = None

    def all_municipalities(self) -> List[MunicipalityFeature]:
        if self._features is None:
            with self._lock:
                if self._features is None:
                    self._features = self._load()
        return self._features

    def _load(self) -> List[MunicipalityFeature]:
        path = Path(self.path or config.MUNICIPALITY_BOUNDARIES_PATH)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        features: List[MunicipalityFeature] = []
        for idx, feature in enumerate(data.get("features") or []):
            props = feature.get("properties") or {}
            try:
                geom = to_shape(feature)
            except (ShapelyError, ValueError, TypeError, AttributeError, KeyError, IndexError) as exc:
                logger.warning("Skipping boundary %s: %s", props.get("id") or idx, exc)
                continue
            if geom.is_empty:
                continue
            features.append(
                MunicipalityFeature(
                    id=str(props.get("id") or idx),
                    name=str(props.get("name") or ""),
                    geometry=geom,
                    bbox=bbox_of(geom),
                )
            )
        logger.info("Loaded %s municipality boundaries from %s", len(features), path)
        return features


_default_store: Optional[MunicipalityBoundaryStore] = None
_default_lock = threading.Lock()


def default_store() -> MunicipalityBoundaryStore:
    global _default_store
    with _default_lock:
        if _default_store is None:
            _default_store = MunicipalityBoundaryStore()
        return _default_store
