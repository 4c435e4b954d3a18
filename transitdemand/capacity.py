"""
capacity.py – building footprint → resident / job capacity

Method
------
* floor area  = geodesic footprint (m²) × 10.7639 (→ ft²) × max(levels, 1)
* residents   = floor(area / ft² per resident)  for residential types
* jobs        = floor(area / ft² per job)       for job types
* airport terminals get their own job formula regardless of `building=*`

The two lookup tables have disjoint keys, so a building is residential, a
job site, or ignored.  Tweak-me constants live in the PUBLIC PARAMETERS block.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Sequence, Tuple

from .geometry import DEFAULT_GEOMETRY, SQ_METERS_TO_SQ_FEET, GeometryEngine
from .models import BBox, Building, LonLat

logger = logging.getLogger("transitdemand.capacity")

# ─────────────────────────────────────────────────────────────────────────────
# PUBLIC PARAMETERS  (edit freely)
# ─────────────────────────────────────────────────────────────────────────────
SQ_FEET_PER_RESIDENT: Dict[str, int] = {
    "yes": 600,                 # untyped: most likely a single-family home
    "apartments": 240,
    "barracks": 100,
    "bungalow": 600,
    "cabin": 600,
    "detached": 600,
    "annexe": 240,
    "dormitory": 125,
    "farm": 600,
    "ger": 240,
    "hotel": 240,               # hotel guests ride transit too
    "house": 600,
    "houseboat": 600,
    "residential": 600,
    "semidetached_house": 400,
    "static_caravan": 500,
    "stilt_house": 600,
    "terrace": 500,
    "tree_house": 240,
    "trullo": 240,
}

SQ_FEET_PER_JOB: Dict[str, int] = {
    "commercial": 150,
    "industrial": 500,
    "kiosk": 50,
    "office": 150,
    "retail": 300,
    "supermarket": 300,
    "warehouse": 500,
    # worship buildings count visitors, not staff
    "religious": 100,
    "cathedral": 100,
    "chapel": 100,
    "church": 100,
    "kingdom_hall": 100,
    "monastery": 100,
    "mosque": 100,
    "presbytery": 100,
    "shrine": 100,
    "synagogue": 100,
    "temple": 100,
    "bakehouse": 300,
    "college": 250,
    "fire_station": 500,
    "government": 150,
    "gatehouse": 150,
    "hospital": 150,
    "kindergarten": 100,
    "museum": 300,
    "public": 300,
    "school": 100,
    "train_station": 1000,
    "transportation": 1000,
    "university": 250,
    # venues treated like offices
    "grandstand": 150,
    "pavilion": 150,
    "riding_hall": 150,
    "sports_hall": 150,
    "sports_centre": 150,
    "stadium": 150,
}

TERMINAL_SQ_FEET_PER_UNIT = 320
TERMINAL_JOBS_PER_UNIT = 3
TERMINAL_MIN_JOBS = 120


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────
def level_multiplier(tags: Dict[str, str]) -> float:
    """`building:levels` as a number ≥ 1; missing or junk → 1."""
    raw = tags.get("building:levels")
    try:
        levels = float(raw)
    except (TypeError, ValueError):
        return 1.0
    if math.isnan(levels) or math.isinf(levels):
        return 1.0
    return max(levels, 1.0)


def floor_area_sqft(footprint_m2: float, tags: Dict[str, str]) -> float:
    return footprint_m2 * SQ_METERS_TO_SQ_FEET * level_multiplier(tags)


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────
def estimate_capacity(tags: Dict[str, str], footprint_m2: float) -> Tuple[int, int]:
    """
    Return ``(residents, jobs)`` for one building; at most one is non-zero.

    Unrecognised types silently yield ``(0, 0)``.
    """
    area = floor_area_sqft(footprint_m2, tags)

    if tags.get("aeroway") == "terminal":
        jobs = max(
            math.floor(area / TERMINAL_SQ_FEET_PER_UNIT) * TERMINAL_JOBS_PER_UNIT,
            TERMINAL_MIN_JOBS,
        )
        return 0, jobs

    kind = tags.get("building")
    if kind in SQ_FEET_PER_RESIDENT:
        return math.floor(area / SQ_FEET_PER_RESIDENT[kind]), 0
    if kind in SQ_FEET_PER_JOB:
        return 0, math.floor(area / SQ_FEET_PER_JOB[kind])
    return 0, 0


def classify_building(
    building_id: str,
    ring: Sequence[LonLat],
    tags: Dict[str, str],
    bounds: Optional[BBox] = None,
    geo: GeometryEngine = DEFAULT_GEOMETRY,
) -> Optional[Building]:
    """
    Turn one raw footprint into a `Building`, or None when it has a
    degenerate ring or contributes no demand.
    """
    if len(ring) < 3:
        logger.debug("Building %s skipped – ring has %d points", building_id, len(ring))
        return None

    residents, jobs = estimate_capacity(tags, geo.ring_area_m2(ring))
    if residents <= 0 and jobs <= 0:
        return None

    center = (bounds or BBox.of_ring(list(ring))).center
    return Building(
        id=str(building_id),
        ring=[tuple(p) for p in ring],
        tags=dict(tags),
        center=center,
        approx_pop=residents,
        approx_jobs=jobs,
    )
