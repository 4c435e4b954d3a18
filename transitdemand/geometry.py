"""
geometry.py – spatial primitives the demand pipeline is written against

Public symbols
--------------
GeometryEngine        – capability protocol (area, containment, distance,
                        density clustering, tessellation, centroid)
ShapelyGeometry       – default engine: shapely 2 + pyproj + scikit-learn
DEFAULT_GEOMETRY      – shared stateless instance
haversine_km(...)     – vectorised great-circle distance

Anything that satisfies `GeometryEngine` can be passed to the clusterer and
tessellator instead of the default.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Tuple

import numpy as np
import shapely
from pyproj import Geod
from shapely.geometry import MultiPoint, Polygon, box, shape
from sklearn.cluster import DBSCAN

from .models import BBox, LonLat

log = logging.getLogger("transitdemand.geometry")

EARTH_RADIUS_KM = 6371.0088
SQ_METERS_TO_SQ_FEET = 10.7639

_GEOD = Geod(ellps="WGS84")                    # thread-safe geodesic helper


# ────────────────────────────────────────────────────────────────────────────
# distance helpers
# ────────────────────────────────────────────────────────────────────────────
def haversine_km(lon1, lat1, lon2, lat2):
    """Great-circle distance in km; accepts scalars or broadcastable arrays."""
    lon1, lat1, lon2, lat2 = map(np.radians, (lon1, lat1, lon2, lat2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


def close_ring(ring: Sequence[LonLat]) -> List[LonLat]:
    ring = [tuple(p) for p in ring]
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


# ────────────────────────────────────────────────────────────────────────────
# capability protocol
# ────────────────────────────────────────────────────────────────────────────
class GeometryEngine(Protocol):
    def ring_area_m2(self, ring: Sequence[LonLat]) -> float: ...

    def points_in_ring(self, ring: Sequence[LonLat],
                       lons: np.ndarray, lats: np.ndarray) -> np.ndarray: ...

    def distance_km(self, a: LonLat, b: LonLat) -> float: ...

    def distances_km(self, origin: LonLat,
                     lons: np.ndarray, lats: np.ndarray) -> np.ndarray: ...

    def density_clusters(self, lons: np.ndarray, lats: np.ndarray,
                         eps_km: float, min_points: int = 1) -> np.ndarray: ...

    def tessellate(self, sites: Sequence[LonLat],
                   bbox: BBox) -> List[Optional[Polygon]]: ...

    def center_of_mass(self, lons: np.ndarray, lats: np.ndarray,
                       weights: Optional[np.ndarray] = None) -> Optional[LonLat]: ...


# ────────────────────────────────────────────────────────────────────────────
# default implementation
# ────────────────────────────────────────────────────────────────────────────
class ShapelyGeometry:
    """Geodesic area via pyproj, containment/tessellation via shapely,
    DBSCAN via scikit-learn on the haversine metric."""

    def ring_area_m2(self, ring: Sequence[LonLat]) -> float:
        if len(ring) < 3:
            return 0.0
        lons = [p[0] for p in ring]
        lats = [p[1] for p in ring]
        area, _ = _GEOD.polygon_area_perimeter(lons, lats)
        return abs(area)

    def points_in_ring(self, ring, lons, lats):
        if len(ring) < 3:
            return np.zeros(len(lons), dtype=bool)
        poly = Polygon(close_ring(ring))
        if not poly.is_valid:
            poly = poly.buffer(0)
        # boundary counts as inside
        return shapely.intersects_xy(poly, np.asarray(lons), np.asarray(lats))

    def distance_km(self, a, b) -> float:
        return float(haversine_km(a[0], a[1], b[0], b[1]))

    def distances_km(self, origin, lons, lats):
        return haversine_km(origin[0], origin[1], np.asarray(lons), np.asarray(lats))

    def density_clusters(self, lons, lats, eps_km, min_points=1):
        """
        DBSCAN labels (noise = -1).  A malformed point set degrades to a
        single cluster so the pipeline keeps going.
        """
        n = len(lons)
        if n == 0:
            return np.zeros(0, dtype=int)
        if n == 1:
            return np.zeros(1, dtype=int) if min_points <= 1 else np.full(1, -1)
        coords = np.radians(np.column_stack([lats, lons]))
        try:
            return DBSCAN(
                eps=eps_km / EARTH_RADIUS_KM,
                min_samples=max(1, int(min_points)),
                metric="haversine",
                algorithm="ball_tree",
            ).fit_predict(coords)
        except ValueError as exc:
            log.warning("DBSCAN failed on %d points (%s) – single cluster fallback", n, exc)
            return np.zeros(n, dtype=int)

    def tessellate(self, sites, bbox):
        """
        One clipped Voronoi cell per site, index-aligned with `sites`.
        Duplicate sites and cells falling outside `bbox` come back as None.
        """
        frame = box(bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat)
        out: List[Optional[Polygon]] = [None] * len(sites)
        if not sites:
            return out

        first_index = {}
        for i, site in enumerate(sites):
            first_index.setdefault((float(site[0]), float(site[1])), i)
        unique = list(first_index)

        if len(unique) == 1:
            cells = [frame]
        else:
            diagram = shapely.voronoi_polygons(MultiPoint(unique), extend_to=frame)
            cells = list(diagram.geoms)

        points = shapely.points(np.asarray(unique))
        tree = shapely.STRtree(cells)
        site_idx, cell_idx = tree.query(points, predicate="intersects")
        owner = {}
        for s, c in zip(site_idx.tolist(), cell_idx.tolist()):
            owner.setdefault(s, c)

        for s, key in enumerate(unique):
            c = owner.get(s)
            if c is None:
                continue
            clipped = cells[c].intersection(frame)
            if clipped.is_empty or clipped.area == 0:
                continue
            out[first_index[key]] = clipped
        return out

    def center_of_mass(self, lons, lats, weights=None):
        lons = np.asarray(lons, dtype=float)
        lats = np.asarray(lats, dtype=float)
        if lons.size == 0:
            return None
        if weights is not None:
            w = np.asarray(weights, dtype=float)
            total = w.sum()
            if total > 0:
                return (float((lons * w).sum() / total), float((lats * w).sum() / total))
        return (float(lons.mean()), float(lats.mean()))


DEFAULT_GEOMETRY = ShapelyGeometry()


# ────────────────────────────────────────────────────────────────────────────
# geodesic helpers for the index/road side-outputs
# ────────────────────────────────────────────────────────────────────────────
def offset_lon(lon: float, lat: float, meters: float) -> float:
    """Longitude reached by travelling `meters` due east."""
    east_lon, _, _ = _GEOD.fwd(lon, lat, 90.0, meters)
    return east_lon


def offset_lat(lon: float, lat: float, meters: float) -> float:
    """Latitude reached by travelling `meters` due north."""
    _, north_lat, _ = _GEOD.fwd(lon, lat, 0.0, meters)
    return north_lat


def line_length_m(geojson_geometry: dict) -> float:
    return _GEOD.geometry_length(shape(geojson_geometry))


def ring_centroid(ring: Sequence[LonLat]) -> Tuple[float, float]:
    poly = Polygon(close_ring(ring))
    c = poly.centroid if poly.area > 0 else MultiPoint(list(ring)).centroid
    return (c.x, c.y)
