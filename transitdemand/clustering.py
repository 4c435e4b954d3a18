"""
clustering.py – residential buildings → neighbourhood seed points

Order of battle
---------------
1. Every `place=*` feature gathers the residential buildings inside its
   polygon, its bounds, or a type-specific radius, and DBSCANs them into
   groups.  Groups above the population cap are re-clustered at a shrinking
   radius, then bisected once the radius floor is hit.
2. Each airport terminal becomes its own seed and claims the housing
   around it.
3. Residential buildings nobody claimed are binned on a coarse grid; dense
   cells spawn synthetic seeds unless an existing seed is close enough to
   adopt them.
4. No seeds at all → one fallback seed on an arbitrary building.
"""
from __future__ import annotations

import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .config import ClusteringConfig, OrphanClusteringConfig
from .geometry import DEFAULT_GEOMETRY, GeometryEngine
from .models import (
    CLUSTER_SOURCE_TAG,
    CODE_TAG,
    SYNTHETIC_TAG,
    TERMINAL_TAG,
    Building,
    IdRegistry,
    LonLat,
    PlaceFeature,
    PlaceKind,
    SeedPoint,
)

log = logging.getLogger("transitdemand.clustering")

ADDRESS_NAME_KEYS = (
    "addr:city",
    "addr:town",
    "addr:village",
    "addr:hamlet",
    "addr:suburb",
    "addr:place",
)


@dataclass
class ClusterResult:
    seeds: List[SeedPoint]
    registry: IdRegistry
    covered_ids: List[str] = field(default_factory=list)


class DemandPointClusterer:
    """
    Builds seed points for one region.  Instances are single-use: call
    `run()` once.
    """

    def __init__(
        self,
        buildings: Sequence[Building],
        places: Sequence[PlaceFeature],
        clustering: Optional[ClusteringConfig] = None,
        orphans: Optional[OrphanClusteringConfig] = None,
        geo: GeometryEngine = DEFAULT_GEOMETRY,
    ) -> None:
        self.cfg = clustering or ClusteringConfig()
        self.orphan_cfg = orphans or OrphanClusteringConfig()
        self.geo = geo
        self.buildings = list(buildings)
        self.places = list(places)

        residential = [b for b in self.buildings if b.approx_pop > 0]
        self._res = residential
        self._lons = np.array([b.center[0] for b in residential], dtype=float)
        self._lats = np.array([b.center[1] for b in residential], dtype=float)
        self._pops = np.array([b.approx_pop for b in residential], dtype=float)
        self._covered = np.zeros(len(residential), dtype=bool)

        self.registry = IdRegistry()
        self.seeds: List[SeedPoint] = []
        self._orphan_counter = 0
        self._terminal_names: Dict[str, int] = {}

    # ── public ─────────────────────────────────────────────────────────────
    def run(self) -> ClusterResult:
        direct, sprawl, terminals, aerodromes = self._bucket_places()

        for place in direct + sprawl:
            self._cluster_place(place)
        log.debug("%d seed(s) from %d place(s)", len(self.seeds), len(direct) + len(sprawl))

        for terminal in terminals:
            self._add_terminal(terminal, aerodromes)

        self._adopt_orphans()

        if not self.seeds:
            self._add_fallback_seed()

        log.info(
            "Clustering → %d seed(s) (%d terminal, %d synthetic) from %d residential building(s)",
            len(self.seeds),
            sum(s.is_terminal for s in self.seeds),
            sum(s.tags.get(SYNTHETIC_TAG) == "true" for s in self.seeds),
            len(self._res),
        )
        covered = [b.id for b, c in zip(self._res, self._covered) if c]
        return ClusterResult(self.seeds, self.registry, covered)

    # ── place buckets ──────────────────────────────────────────────────────
    def _bucket_places(self):
        direct_types = set(self.cfg.direct_place_types)
        sprawl_types = set(self.cfg.sprawl_place_types)
        direct, sprawl, terminals, aerodromes = [], [], [], []
        for place in self.places:
            if place.is_terminal:
                terminals.append(place)
            elif place.is_aerodrome:
                aerodromes.append(place)
            elif place.place_type in direct_types:
                direct.append(place)
            elif place.place_type in sprawl_types:
                sprawl.append(place)
        return direct, sprawl, terminals, aerodromes

    # ── place clustering ───────────────────────────────────────────────────
    def _members_for_place(self, place: PlaceFeature) -> np.ndarray:
        if not len(self._res):
            return np.zeros(0, dtype=int)

        if place.kind is not PlaceKind.POINT and place.ring is not None:
            mask = self.geo.points_in_ring(place.ring, self._lons, self._lats)
        elif place.bounds is not None:
            b = place.bounds
            mask = (
                (self._lons >= b.min_lon) & (self._lons <= b.max_lon)
                & (self._lats >= b.min_lat) & (self._lats <= b.max_lat)
            )
        else:
            radius = self.cfg.fallback_radius_km.get(
                place.place_type, self.cfg.default_fallback_radius_km
            )
            mask = self.geo.distances_km(place.center, self._lons, self._lats) <= radius
        return np.flatnonzero(mask)

    def _cluster_place(self, place: PlaceFeature) -> None:
        distance = self.cfg.cluster_distance_km.get(
            place.place_type, self.cfg.default_cluster_distance_km
        )
        members = self._members_for_place(place)

        if not len(members) or self._pops[members].sum() <= 0:
            self._add_place_seed(place, place.center, [], None)
            return

        labels = self.geo.density_clusters(
            self._lons[members], self._lats[members], distance, 1
        )
        groups = [
            split
            for group in _organize_groups(members, labels)
            for split in self._split_large_group(group, distance)
        ]
        groups = [g for g in groups if len(g) and self._pops[g].sum() > 0]

        if not groups:
            self._add_place_seed(place, place.center, [], None)
            return

        for index, group in enumerate(groups):
            center = self._population_centroid(group)
            suffix = f"Cluster {index + 1}" if len(groups) > 1 else None
            self._add_place_seed(place, center, group, suffix)

    def _split_large_group(self, group: np.ndarray, distance: float) -> List[np.ndarray]:
        """Recursively break a group until it is under the population cap."""
        cap = self.cfg.max_cluster_population
        floor_km = self.cfg.min_split_distance_km
        population = self._pops[group].sum()

        if population <= cap or len(group) < 3 or distance <= floor_km:
            if population > cap and len(group) >= 2 and distance <= floor_km:
                left, right = self._bisect(group)
                if len(left) and len(right):
                    return (self._split_large_group(left, distance)
                            + self._split_large_group(right, distance))
            return [group]

        next_distance = max(distance * self.cfg.split_factor, floor_km)
        labels = self.geo.density_clusters(
            self._lons[group], self._lats[group], next_distance, 1
        )
        sub_groups = _organize_groups(group, labels)
        if len(sub_groups) == 1 and len(sub_groups[0]) == len(group):
            return [group]

        return [
            piece
            for sub_group in sub_groups
            for piece in self._split_large_group(sub_group, next_distance)
        ]

    def _bisect(self, group: np.ndarray):
        lons, lats = self._lons[group], self._lats[group]
        lon_range = lons.max() - lons.min()
        lat_range = lats.max() - lats.min()
        axis = lons if lon_range >= lat_range else lats
        ordered = group[np.argsort(axis, kind="stable")]
        mid = math.ceil(len(ordered) / 2)
        return ordered[:mid], ordered[mid:]

    def _population_centroid(self, group: np.ndarray) -> LonLat:
        return self.geo.center_of_mass(
            self._lons[group], self._lats[group], self._pops[group]
        )

    def _add_place_seed(
        self,
        place: PlaceFeature,
        center: LonLat,
        members: Iterable[int],
        suffix: Optional[str],
    ) -> SeedPoint:
        tags = {}
        if place.tags.get("name"):
            tags["name"] = place.tags["name"]
        if place.place_type:
            tags["place"] = place.place_type
        if suffix:
            tags["name"] = f"{tags['name']} {suffix}" if "name" in tags else suffix
            tags[SYNTHETIC_TAG] = "true"

        raw_id = f"{place.id}-{suffix.split()[-1]}" if suffix else place.id
        return self._register(self.registry.reserve(raw_id), center, tags, members)

    # ── terminals ──────────────────────────────────────────────────────────
    def _add_terminal(self, terminal: PlaceFeature, aerodromes: List[PlaceFeature]) -> None:
        airport = self._nearest_aerodrome(terminal.center, aerodromes)
        fallback_tags = airport.tags if airport else {}

        # own tags win; the aerodrome only fills a missing code or name
        code = (
            terminal.tags.get("iata")
            or terminal.tags.get("icao")
            or fallback_tags.get("iata")
            or fallback_tags.get("icao")
        )
        name = terminal.tags.get("name") or fallback_tags.get("name")
        key = code or name or "Airport"
        seq = self._terminal_names.get(key, 0) + 1
        self._terminal_names[key] = seq

        tags = {
            "name": f"{key} Terminal {seq}",
            TERMINAL_TAG: "true",
            CODE_TAG: key,
            "aeroway": "terminal",
        }

        seed_id = self.registry.reserve_terminal(terminal.id)
        self._register(seed_id, terminal.center, tags, [])

        if len(self._res):
            near = self.geo.distances_km(terminal.center, self._lons, self._lats)
            self._covered |= near <= self.cfg.terminal_cover_radius_km

    def _nearest_aerodrome(
        self, center: LonLat, aerodromes: List[PlaceFeature]
    ) -> Optional[PlaceFeature]:
        best, best_km = None, self.cfg.aerodrome_search_radius_km
        for aerodrome in aerodromes:
            d = self.geo.distance_km(center, aerodrome.center)
            if d <= best_km:
                best, best_km = aerodrome, d
        return best

    # ── orphans ────────────────────────────────────────────────────────────
    def _adopt_orphans(self) -> None:
        cfg = self.orphan_cfg
        orphans = np.flatnonzero(~self._covered)
        if not len(orphans):
            return

        size = cfg.cell_size_degrees
        cells: "OrderedDict[tuple, List[int]]" = OrderedDict()
        for i in orphans.tolist():
            key = (math.floor(self._lons[i] / size), math.floor(self._lats[i] / size))
            cells.setdefault(key, []).append(i)

        ranked = sorted(
            ((key, np.array(idx)) for key, idx in cells.items()),
            key=lambda kv: (-self._pops[kv[1]].sum(), kv[0]),
        )
        added = 0
        for (cx, cy), idx in ranked:
            if self._pops[idx].sum() < cfg.min_population:
                continue
            diagonal = self.geo.distance_km((cx * size, cy * size), ((cx + 1) * size, (cy + 1) * size))
            eps = min(max(diagonal, self.cfg.min_split_distance_km), cfg.max_distance_km)
            labels = self.geo.density_clusters(self._lons[idx], self._lats[idx], eps, cfg.min_points)

            for group in _organize_groups(idx, labels, keep_noise=False):
                for piece in self._split_large_group(group, cfg.base_distance_km):
                    if self._pops[piece].sum() <= 0:
                        continue
                    center = self._population_centroid(piece)
                    if self._near_existing_seed(center):
                        continue
                    self._add_orphan_seed(center, piece)
                    added += 1
        log.debug("Orphan adoption → %d synthetic seed(s)", added)

    def _near_existing_seed(self, center: LonLat) -> bool:
        if not self.seeds:
            return False
        lons = np.array([s.location[0] for s in self.seeds])
        lats = np.array([s.location[1] for s in self.seeds])
        return bool(
            self.geo.distances_km(center, lons, lats).min()
            <= self.orphan_cfg.adoption_threshold_km
        )

    def _add_orphan_seed(self, center: LonLat, members: np.ndarray) -> None:
        number = self._orphan_counter
        self._orphan_counter += 1
        name = derive_name([self._res[i] for i in members.tolist()])
        tags = {
            "name": name or f"Synthetic Cluster {number}",
            SYNTHETIC_TAG: "true",
            CLUSTER_SOURCE_TAG: "orphan-residential",
        }
        seed_id = self.registry.reserve(f"synthetic-{number}")
        self._register(seed_id, center, tags, members)

    # ── fallback ───────────────────────────────────────────────────────────
    def _add_fallback_seed(self) -> None:
        if not self.buildings:
            log.warning("No buildings and no places – region yields no seeds")
            return
        tags = {"name": "Generated Cluster", SYNTHETIC_TAG: "true"}
        seed_id = self.registry.reserve("generated-cluster")
        self._register(seed_id, self.buildings[0].center, tags, [])
        log.warning("No seeds found – using fallback seed %s", seed_id)

    # ── bookkeeping ────────────────────────────────────────────────────────
    def _register(self, seed_id: str, center: LonLat, tags: Dict[str, str],
                  members: Iterable[int]) -> SeedPoint:
        members = list(members)
        if members:
            self._covered[members] = True
        seed = SeedPoint(
            id=seed_id,
            location=(float(center[0]), float(center[1])),
            tags=tags,
            member_ids=[self._res[i].id for i in members],
        )
        self.seeds.append(seed)
        return seed


# ────────────────────────────────────────────────────────────────────────────
# helpers
# ────────────────────────────────────────────────────────────────────────────
def _organize_groups(
    members: np.ndarray, labels: np.ndarray, keep_noise: bool = True
) -> List[np.ndarray]:
    """Group `members` by DBSCAN label; noise points become singletons."""
    groups: "OrderedDict[object, List[int]]" = OrderedDict()
    for member, label in zip(np.asarray(members).tolist(), np.asarray(labels).tolist()):
        if label == -1:
            if not keep_noise:
                continue
            key = ("noise", member)
        else:
            key = label
        groups.setdefault(key, []).append(member)
    return [np.array(g, dtype=int) for g in groups.values()]


def derive_name(buildings: Sequence[Building]) -> Optional[str]:
    """Population-weighted majority vote over address tags."""
    scores: Dict[str, float] = {}
    for building in buildings:
        candidates = [building.tags[k] for k in ADDRESS_NAME_KEYS if building.tags.get(k)]
        if not candidates and building.tags.get("name"):
            candidates.append(building.tags["name"])
        weight = building.approx_pop or 1
        for candidate in candidates:
            scores[candidate] = scores.get(candidate, 0) + weight
    if not scores:
        return None
    return sorted(scores.items(), key=lambda kv: -kv[1])[0][0]


def cluster_seeds(
    buildings: Sequence[Building],
    places: Sequence[PlaceFeature],
    clustering: Optional[ClusteringConfig] = None,
    orphans: Optional[OrphanClusteringConfig] = None,
    geo: GeometryEngine = DEFAULT_GEOMETRY,
) -> ClusterResult:
    return DemandPointClusterer(buildings, places, clustering, orphans, geo).run()
