"""Core dataclasses: buildings, places, seeds, catchments, nodes and flows."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

LonLat = Tuple[float, float]

SYNTHETIC_TAG = "synthetic"
TERMINAL_TAG = "terminal"
CODE_TAG = "code"
CLUSTER_SOURCE_TAG = "cluster_source"


class PlaceKind(Enum):
    POINT = "node"
    AREA = "way"
    REGION = "relation"

    @classmethod
    def parse(cls, raw: str) -> "PlaceKind":
        aliases = {"point": "node", "area": "way", "region": "relation"}
        return cls(aliases.get(raw, raw))


@dataclass(frozen=True)
class BBox:
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def center(self) -> LonLat:
        return ((self.min_lon + self.max_lon) / 2, (self.min_lat + self.max_lat) / 2)

    def contains(self, lon: float, lat: float) -> bool:
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat

    @classmethod
    def of_ring(cls, ring: List[LonLat]) -> "BBox":
        lons = [p[0] for p in ring]
        lats = [p[1] for p in ring]
        return cls(min(lons), min(lats), max(lons), max(lats))


@dataclass
class Building:
    """
    One classified building.  At most one of `approx_pop` / `approx_jobs`
    is non-zero; unclassified buildings never become a Building.
    """
    id: str
    ring: List[LonLat]
    tags: Dict[str, str]
    center: LonLat
    approx_pop: int = 0
    approx_jobs: int = 0

    @property
    def is_residential(self) -> bool:
        return self.approx_pop > 0


@dataclass(frozen=True)
class PlaceFeature:
    id: str
    kind: PlaceKind
    tags: Dict[str, str]
    center: LonLat
    bounds: Optional[BBox] = None
    ring: Optional[List[LonLat]] = None

    @property
    def place_type(self) -> Optional[str]:
        return self.tags.get("place")

    @property
    def is_terminal(self) -> bool:
        return self.tags.get("aeroway") == "terminal"

    @property
    def is_aerodrome(self) -> bool:
        return self.tags.get("aeroway") == "aerodrome"


@dataclass
class SeedPoint:
    """Candidate neighbourhood location before tessellation."""
    id: str
    location: LonLat
    tags: Dict[str, str] = field(default_factory=dict)
    member_ids: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.tags.get(TERMINAL_TAG) == "true"


@dataclass
class Catchment:
    """Aggregated demand inside one tessellation cell."""
    seed: SeedPoint
    population: int = 0
    jobs: int = 0
    pop_centroid: Optional[LonLat] = None
    job_centroid: Optional[LonLat] = None
    building_ids: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.seed.is_terminal


@dataclass
class Neighborhood:
    """A demand node as emitted to the simulation."""
    id: str
    location: LonLat
    residents: int
    jobs: int
    tags: Dict[str, str] = field(default_factory=dict)
    pop_ids: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.tags.get(TERMINAL_TAG) == "true"

    @property
    def terminal_key(self) -> Optional[str]:
        if not self.is_terminal:
            return None
        return self.tags.get(CODE_TAG) or self.tags.get("name") or self.id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location": [self.location[0], self.location[1]],
            "jobs": self.jobs,
            "residents": self.residents,
            "popIds": list(self.pop_ids),
            "tags": dict(self.tags),
        }


@dataclass
class Flow:
    """One directed population group (residence → job)."""
    id: str
    residence_id: str
    job_id: str
    size: int
    driving_distance: int
    driving_seconds: int
    # rebalancing inputs only; never serialised
    closeness: float = 0.0
    terminal_key: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.terminal_key is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "residenceId": self.residence_id,
            "jobId": self.job_id,
            "size": self.size,
            "drivingDistance": self.driving_distance,
            "drivingSeconds": self.driving_seconds,
        }


@dataclass
class DemandDataset:
    points: List[Neighborhood]
    pops: List[Flow]

    def to_dict(self) -> dict:
        return {
            "points": [p.to_dict() for p in self.points],
            "pops": [f.to_dict() for f in self.pops],
        }


class IdRegistry:
    """
    Bidirectional mapping between raw seed ids (place ids, synthetic ids)
    and the ids nodes are published under.

    Ordinary seeds publish under their raw id; terminals get a display id
    from a monotonic counter.  Raw ids are made unique on registration.
    """

    def __init__(self, terminal_prefix: str = "terminal") -> None:
        self._terminal_prefix = terminal_prefix
        self._terminal_counter = 0
        self._raw_to_display: Dict[str, str] = {}
        self._display_to_raw: Dict[str, List[str]] = {}

    def reserve(self, raw_id: str) -> str:
        """Return `raw_id`, suffixed if it is already taken."""
        candidate, n = raw_id, 1
        while candidate in self._raw_to_display:
            n += 1
            candidate = f"{raw_id}~{n}"
        self._link(candidate, candidate)
        return candidate

    def reserve_terminal(self, raw_id: str) -> str:
        raw = self.reserve(raw_id)
        display = f"{self._terminal_prefix}-{self._terminal_counter}"
        self._terminal_counter += 1
        self._display_to_raw.pop(raw, None)
        self._link(raw, display)
        return raw

    def _link(self, raw: str, display: str) -> None:
        self._raw_to_display[raw] = display
        self._display_to_raw.setdefault(display, []).append(raw)

    def display_id(self, raw_id: str) -> str:
        return self._raw_to_display[raw_id]

    def raw_ids(self, display_id: str) -> List[str]:
        return list(self._display_to_raw.get(display_id, []))

    def __contains__(self, raw_id: str) -> bool:
        return raw_id in self._raw_to_display

    def __len__(self) -> int:
        return len(self._raw_to_display)
