# ── transitdemand/pipeline.py ───────────────────────────────────────────────
"""
pipeline.py – run the demand stack for **one** region, or all of them

* Reads buildings + places concurrently (both must exist)
* Builds the building grid index, the demand dataset and the filtered roads
* Publishes `<processed>/<CODE>/` only once every stage has succeeded

Regions share nothing; a failure aborts only the region it happened in.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .building_index import build_building_index
from .capacity import classify_building
from .clustering import cluster_seeds
from .config import DemandConfig, RegionSpec
from .flows import synthesize_flows
from .geometry import DEFAULT_GEOMETRY, GeometryEngine
from .io import (
    RawBuilding,
    RawPlace,
    load_region_inputs,
    place_from_raw,
    publish_region_output,
    read_json,
    write_json,
)
from .models import BBox, Building, DemandDataset, PlaceFeature
from .roads import filter_roads
from .tessellation import build_catchments, build_neighborhoods

log = logging.getLogger("transitdemand.pipeline")

BUILDINGS_FILE = "buildings.json"
PLACES_FILE = "places.json"
ROADS_FILE = "roads.geojson"

DEMAND_OUTPUT = "demand_data.json"
INDEX_OUTPUT = "buildings_index.json"
ROADS_OUTPUT = "roads.geojson"


# ─────────────────────────── helper utils ──────────────────────────────────
def classify_buildings(
    raw_buildings: Iterable[RawBuilding], geo: GeometryEngine = DEFAULT_GEOMETRY
) -> List[Building]:
    out = []
    for raw in raw_buildings:
        bounds = raw.bounds.to_bbox() if raw.bounds else None
        building = classify_building(raw.id, raw.ring, raw.tags, bounds, geo)
        if building is not None:
            out.append(building)
    log.info(
        "Classified %d building(s): %d residential (%d residents), %d job site(s) (%d jobs)",
        len(out),
        sum(b.approx_pop > 0 for b in out),
        sum(b.approx_pop for b in out),
        sum(b.approx_jobs > 0 for b in out),
        sum(b.approx_jobs for b in out),
    )
    return out


def parse_places(raw_places: Iterable[RawPlace]) -> List[PlaceFeature]:
    places = [p for p in (place_from_raw(raw) for raw in raw_places) if p is not None]
    log.debug("Parsed %d usable place feature(s)", len(places))
    return places


def build_demand(
    raw_buildings: Sequence[RawBuilding],
    raw_places: Sequence[RawPlace],
    bbox: BBox,
    config: DemandConfig,
    geo: GeometryEngine = DEFAULT_GEOMETRY,
) -> DemandDataset:
    """Capacity → seeds → catchments → nodes → flows."""
    buildings = classify_buildings(raw_buildings, geo)
    places = parse_places(raw_places)

    clusters = cluster_seeds(buildings, places, config.clustering, config.orphan_clustering, geo)
    if not clusters.seeds:
        return DemandDataset(points=[], pops=[])

    catchments = build_catchments(clusters.seeds, buildings, bbox, geo)
    nodes = build_neighborhoods(catchments, clusters.registry, config.distance_weighting)
    return synthesize_flows(nodes, config.distance_weighting, config.population_chunking)


def load_roads(path: Path, config: DemandConfig) -> Optional[dict]:
    if not path.is_file():
        log.info("No road network at %s – skipping", path)
        return None
    return filter_roads(
        read_json(path),
        config.road_filters.exclude_highways,
        config.road_filters.min_length_meters,
    )


# ─────────────────────────────── main API ──────────────────────────────────
def run_region(
    region: RegionSpec,
    config: DemandConfig,
    geo: GeometryEngine = DEFAULT_GEOMETRY,
) -> Path:
    """Process one region end-to-end and return its output directory."""
    log.info("↳ %s – start", region.code)
    raw_dir = Path(config.paths.raw_data_dir) / region.code
    out_dir = Path(config.paths.processed_data_dir) / region.code

    # 1 ▸ inputs -----------------------------------------------------------
    raw_buildings, raw_places = load_region_inputs(raw_dir / BUILDINGS_FILE, raw_dir / PLACES_FILE)

    # 2 ▸ building index ---------------------------------------------------
    index = build_building_index(raw_buildings)

    # 3 ▸ demand -----------------------------------------------------------
    dataset = build_demand(raw_buildings, raw_places, BBox(*region.bbox), config, geo)

    # 4 ▸ roads ------------------------------------------------------------
    roads = load_roads(raw_dir / ROADS_FILE, config)

    # 5 ▸ export -----------------------------------------------------------
    decimals = config.output_precision.decimals

    def _write(target: Path) -> None:
        write_json(target / INDEX_OUTPUT, index, decimals)
        if roads is not None:
            write_json(target / ROADS_OUTPUT, roads, decimals)
        write_json(target / DEMAND_OUTPUT, dataset.to_dict(), decimals)

    out_dir.parent.mkdir(parents=True, exist_ok=True)
    publish_region_output(out_dir, _write)

    # 6 ▸ KPI log ----------------------------------------------------------
    log.info("%s ✓ %d node(s) | %d flow(s) | %s commuters",
             region.code,
             len(dataset.points),
             len(dataset.pops),
             f"{sum(f.size for f in dataset.pops):,}")
    return out_dir


def run_all(config: DemandConfig, codes: Optional[Sequence[str]] = None) -> List[str]:
    """Run every configured region (or the `codes` subset); return failures."""
    regions = config.regions
    if codes:
        wanted = {c.upper() for c in codes}
        unknown = wanted - {r.code.upper() for r in regions}
        for code in sorted(unknown):
            log.error("Region %s is not configured", code)
        regions = [r for r in regions if r.code.upper() in wanted]
    else:
        unknown = set()

    failed: List[str] = sorted(unknown)
    for region in regions:
        try:
            run_region(region, config)
        except Exception:  # noqa: BLE001
            log.exception("%s ✗ pipeline failed – no output written", region.code)
            failed.append(region.code)
    return failed
