"""
roads.py – drop unwanted features from the road GeoJSON

Only `features` is touched; every other key of the collection is passed
through unchanged.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from shapely.errors import ShapelyError

from .geometry import line_length_m

logger = logging.getLogger("transitdemand.roads")

LINEAR_TYPES = {"LineString", "MultiLineString"}


def keep_road_feature(
    feature: dict,
    exclude_highways: Optional[set] = None,
    min_length_meters: Optional[float] = None,
) -> bool:
    if not isinstance(feature, dict) or not feature.get("geometry"):
        return False

    if exclude_highways:
        highway = (feature.get("properties") or {}).get("highway")
        if highway and highway in exclude_highways:
            return False

    if min_length_meters and min_length_meters > 0:
        geometry = feature["geometry"]
        if geometry.get("type") in LINEAR_TYPES:
            try:
                if line_length_m(geometry) < min_length_meters:
                    return False
            except (ShapelyError, ValueError, TypeError, KeyError, IndexError) as exc:
                logger.debug("Length check failed (%s) – keeping feature", exc)
    return True


def filter_roads(
    collection: dict,
    exclude_highways: Iterable[str] = (),
    min_length_meters: Optional[float] = None,
) -> dict:
    if not isinstance(collection, dict) or not isinstance(collection.get("features"), list):
        return collection

    excluded = set(exclude_highways or ())
    before = len(collection["features"])
    out = dict(collection)
    out["features"] = [
        f for f in collection["features"]
        if keep_road_feature(f, excluded, min_length_meters)
    ]
    logger.info("Roads → kept %d of %d feature(s)", len(out["features"]), before)
    return out
