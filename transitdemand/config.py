# File: transitdemand/config.py
"""
Demand Pipeline Configuration Management
Centralized configuration for every stage of the demand synthesis.

All sections are optional; every tunable carries a default so an empty
config file (or none at all) produces the stock behaviour.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from . import PROCESSED_DATA_DIR, RAW_DATA_DIR

logger = logging.getLogger("transitdemand.config")

DEFAULT_CONFIG_FILE = Path("config.yaml")

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    """`maxConnectionsPerPoint` → `max_connections_per_point`."""
    return _CAMEL.sub("_", key).lower()


# ────────────────────────────────────────────────────────────────────────────
# Region metadata
# ────────────────────────────────────────────────────────────────────────────
class RegionSpec(BaseModel):
    """One processing region (identified by a short code)."""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(..., min_length=1)
    name: str = ""
    description: str = ""
    bbox: Tuple[float, float, float, float]
    population: Optional[int] = Field(None, ge=0)

    @field_validator("code", "name", "description", mode="before")
    @classmethod
    def _strip_strings(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _check_bbox(self) -> "RegionSpec":
        min_lon, min_lat, max_lon, max_lat = self.bbox
        if not (min_lon < max_lon and min_lat < max_lat):
            raise ValueError(f"bbox {self.bbox} is empty or inverted")
        return self


# ────────────────────────────────────────────────────────────────────────────
# Sections
# ────────────────────────────────────────────────────────────────────────────
@dataclass
class PathConfig:
    """Input and output roots; per-region folders are named by region code."""
    raw_data_dir: Path = RAW_DATA_DIR
    processed_data_dir: Path = PROCESSED_DATA_DIR

    def __post_init__(self):
        for name in ("raw_data_dir", "processed_data_dir"):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))


@dataclass
class OutputPrecisionConfig:
    decimals: Optional[int] = None  # None = unrounded


@dataclass
class RoadFilterConfig:
    exclude_highways: List[str] = field(default_factory=list)
    min_length_meters: Optional[float] = None


@dataclass
class PopulationChunkingConfig:
    """Bounds for the population groups a commute flow is split into."""
    target_size: int = 160
    min_size: int = 20
    minimum_finalize_size: int = 30
    max_size: int = 380
    max_connections_per_point: int = 24


@dataclass
class DistanceWeightingConfig:
    """Gravity-style destination weighting and terminal traffic bounds."""
    # upper population bound of tiers 1–4; tier 5 is everything above
    population_tiers: List[int] = field(default_factory=lambda: [500, 1500, 4000, 10000])
    distance_scales_km: List[float] = field(default_factory=lambda: [2.5, 4.0, 6.0, 9.0, 14.0])
    local_quotas: List[int] = field(default_factory=lambda: [2, 2, 3, 3, 4])

    distance_exponent: float = 2.0
    closeness_floor: float = 0.02
    closeness_exponent: float = 1.5
    job_exponent: float = 0.85
    cluster_exponent: float = 0.35
    base_weight: float = 0.5

    terminal_boost: float = 1.5
    terminal_closeness_exponent: float = 0.6
    terminal_min_share: float = 0.01
    terminal_max_share: float = 0.08
    global_terminal_share: float = 0.05
    terminal_min_share_attempts: int = 10_000

    job_dominance_ratio: float = 5.0

    def __post_init__(self):
        tiers = len(self.population_tiers) + 1
        if len(self.distance_scales_km) != tiers or len(self.local_quotas) != tiers:
            raise ValueError(
                f"distance_scales_km and local_quotas need {tiers} entries "
                f"(one per population tier)"
            )
        if not 0 <= self.terminal_min_share <= self.terminal_max_share <= 1:
            raise ValueError("terminal shares must satisfy 0 ≤ min ≤ max ≤ 1")


@dataclass
class OrphanClusteringConfig:
    """Synthetic seeds for residential buildings no place claimed."""
    min_population: int = 30
    adoption_threshold_km: float = 0.9
    base_distance_km: float = 1.2
    min_points: int = 4
    max_distance_km: float = 1.6
    cell_size_degrees: float = 0.004


def _default_cluster_distances() -> Dict[str, float]:
    return {
        "isolated_dwelling": 0.35,
        "hamlet": 0.45,
        "village": 0.6,
        "town": 0.8,
        "suburb": 0.75,
        "residential": 0.7,
        "locality": 0.5,
        "neighbourhood": 0.45,
        "quarter": 0.5,
        "city": 0.9,
    }


def _default_fallback_radii() -> Dict[str, float]:
    return {
        "isolated_dwelling": 1.0,
        "hamlet": 1.25,
        "village": 2.0,
        "town": 3.0,
        "suburb": 2.5,
        "residential": 2.25,
        "locality": 1.5,
        "neighbourhood": 1.75,
        "quarter": 2.0,
        "city": 4.0,
    }


@dataclass
class ClusteringConfig:
    """Place-seeded density clustering of residential buildings."""
    direct_place_types: List[str] = field(default_factory=lambda: ["quarter", "neighbourhood"])
    sprawl_place_types: List[str] = field(default_factory=lambda: [
        "suburb", "town", "village", "hamlet", "isolated_dwelling",
        "locality", "residential", "city",
    ])
    cluster_distance_km: Dict[str, float] = field(default_factory=_default_cluster_distances)
    fallback_radius_km: Dict[str, float] = field(default_factory=_default_fallback_radii)
    default_cluster_distance_km: float = 0.6
    default_fallback_radius_km: float = 2.0

    max_cluster_population: int = 7500
    min_split_distance_km: float = 0.15
    split_factor: float = 0.7

    terminal_cover_radius_km: float = 1.2
    aerodrome_search_radius_km: float = 80.0


@dataclass
class LoggingConfig:
    level: str = "INFO"


_SECTIONS = {
    "paths": PathConfig,
    "output_precision": OutputPrecisionConfig,
    "road_filters": RoadFilterConfig,
    "population_chunking": PopulationChunkingConfig,
    "distance_weighting": DistanceWeightingConfig,
    "orphan_clustering": OrphanClusteringConfig,
    "clustering": ClusteringConfig,
    "logging": LoggingConfig,
}


@dataclass
class DemandConfig:
    """Main configuration class containing all settings"""
    regions: List[RegionSpec] = field(default_factory=list)
    paths: PathConfig = field(default_factory=PathConfig)
    output_precision: OutputPrecisionConfig = field(default_factory=OutputPrecisionConfig)
    road_filters: RoadFilterConfig = field(default_factory=RoadFilterConfig)
    population_chunking: PopulationChunkingConfig = field(default_factory=PopulationChunkingConfig)
    distance_weighting: DistanceWeightingConfig = field(default_factory=DistanceWeightingConfig)
    orphan_clustering: OrphanClusteringConfig = field(default_factory=OrphanClusteringConfig)
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load_from_file(cls, file_path: Union[str, Path]) -> "DemandConfig":
        """Load configuration from file (JSON or YAML)"""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            if file_path.suffix.lower() in [".yaml", ".yml"]:
                config_data = yaml.safe_load(f)
            else:
                config_data = json.load(f)

        logger.debug("Loaded configuration from %s", file_path)
        return cls.from_dict(config_data or {})

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "DemandConfig":
        """Create configuration from dictionary"""
        kwargs: Dict[str, Any] = {}
        for raw_key, value in config_dict.items():
            key = _snake(raw_key)
            if key == "regions" or key == "places":
                kwargs["regions"] = _parse_regions(value or [])
            elif key in _SECTIONS:
                kwargs[key] = _build_section(_SECTIONS[key], value or {})
            else:
                logger.warning("Ignoring unknown config key '%s'", raw_key)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        out: Dict[str, Any] = {"regions": [r.model_dump(mode="json") for r in self.regions]}
        for name in _SECTIONS:
            section = asdict(getattr(self, name))
            out[name] = {k: (str(v) if isinstance(v, Path) else v) for k, v in section.items()}
        return out

    def save_to_file(self, file_path: Union[str, Path]):
        """Save configuration to file (JSON or YAML)"""
        file_path = Path(file_path)
        config_dict = self.to_dict()

        with open(file_path, "w", encoding="utf-8") as f:
            if file_path.suffix.lower() in [".yaml", ".yml"]:
                yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2)
            else:
                json.dump(config_dict, f, indent=2)


def _build_section(section_cls, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    kwargs = {}
    for raw_key, value in values.items():
        key = _snake(raw_key)
        if key not in known:
            logger.warning("Ignoring unknown %s key '%s'", section_cls.__name__, raw_key)
            continue
        kwargs[key] = value
    return section_cls(**kwargs)


def _parse_regions(raw_regions: List[Dict[str, Any]]) -> List[RegionSpec]:
    regions = []
    for raw in raw_regions:
        try:
            regions.append(RegionSpec(**raw))
        except ValidationError as err:
            raise ValueError(f"Invalid region entry {raw!r}: {err}") from err
    return regions


def load_config(path: Optional[Union[str, Path]] = None) -> DemandConfig:
    """
    Resolve the configuration for a run.

    An explicit path must exist; without one, ``config.yaml`` in the
    working directory is used when present, else the stock defaults.
    """
    if path is not None:
        return DemandConfig.load_from_file(path)
    if DEFAULT_CONFIG_FILE.exists():
        return DemandConfig.load_from_file(DEFAULT_CONFIG_FILE)
    logger.info("No config file found – using defaults")
    return DemandConfig()
