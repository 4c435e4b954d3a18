"""
building_index.py – ~100 m grid over every building footprint

The simulation looks buildings up by cell, so each footprint is binned by
its centroid and shipped in a compact record (bbox, foundation depth,
polygon).
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence, Tuple

from .geometry import close_ring, offset_lat, offset_lon, ring_centroid
from .io import RawBuilding

logger = logging.getLogger("transitdemand.building_index")

CELL_SIZE_METERS = 100.0


def foundation_depth(tags: Dict[str, str]) -> float:
    raw = tags.get("building:levels:underground")
    try:
        depth = float(raw)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(depth):
        return 1
    return int(depth) if depth.is_integer() else depth


def build_building_index(buildings: Sequence[RawBuilding]) -> dict:
    footprints: List[Tuple[List[Tuple[float, float]], Dict[str, str]]] = []
    for raw in buildings:
        ring = raw.ring
        if len(ring) < 3:
            continue
        footprints.append((close_ring(ring), raw.tags))

    if not footprints:
        logger.info("Building index → empty (no usable footprints)")
        return {
            "cs": 0,
            "bbox": [0, 0, 0, 0],
            "grid": [0, 0],
            "cells": [],
            "buildings": [],
            "stats": {"count": 0, "maxDepth": 1},
        }

    min_lon = min(p[0] for ring, _ in footprints for p in ring)
    min_lat = min(p[1] for ring, _ in footprints for p in ring)
    max_lon = max(p[0] for ring, _ in footprints for p in ring)
    max_lat = max(p[1] for ring, _ in footprints for p in ring)

    cell_w = offset_lon(min_lon, min_lat, CELL_SIZE_METERS) - min_lon
    cell_h = offset_lat(min_lon, min_lat, CELL_SIZE_METERS) - min_lat
    cols = math.floor((max_lon - min_lon) / cell_w) + 1
    rows = math.floor((max_lat - min_lat) / cell_h) + 1

    cells: Dict[Tuple[int, int], List[int]] = {}
    records = []
    max_depth = 1
    for idx, (ring, tags) in enumerate(footprints):
        cx, cy = ring_centroid(ring)
        x = min(max(math.floor((cx - min_lon) / cell_w), 0), cols - 1)
        y = min(max(math.floor((cy - min_lat) / cell_h), 0), rows - 1)
        cells.setdefault((x, y), []).append(idx)

        depth = foundation_depth(tags)
        max_depth = max(max_depth, depth)
        lons = [p[0] for p in ring]
        lats = [p[1] for p in ring]
        records.append({
            "b": [min(lons), min(lats), max(lons), max(lats)],
            "f": depth,
            "p": [[[lon, lat] for lon, lat in ring]],
        })

    logger.info("Building index → %d building(s) in %d cell(s) (%dx%d grid)",
                len(records), len(cells), cols, rows)
    return {
        "cs": round(cell_h, 4),
        "bbox": [min_lon, min_lat, max_lon, min_lat + rows * cell_h],
        "grid": [cols, rows],
        "cells": [[x, y, *ids] for (x, y), ids in cells.items()],
        "buildings": records,
        "stats": {"count": len(records), "maxDepth": max_depth},
    }
