"""
tessellation.py – seed points → Voronoi catchments → demand nodes

Every building is credited to the catchment whose cell contains its center
(cell boundaries count once, to the lowest cell index).  Population and job
centroids are tracked separately; a catchment with no weight of a kind
falls back to its seed location.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd

from .config import DistanceWeightingConfig
from .geometry import DEFAULT_GEOMETRY, GeometryEngine
from .models import BBox, Building, Catchment, IdRegistry, Neighborhood, SeedPoint

log = logging.getLogger("transitdemand.tessellation")

CRS = "EPSG:4326"


# ─────────────────────────── catchments ────────────────────────────────────
def build_catchments(
    seeds: Sequence[SeedPoint],
    buildings: Sequence[Building],
    bbox: BBox,
    geo: GeometryEngine = DEFAULT_GEOMETRY,
) -> List[Catchment]:
    """One Catchment per seed that owns a non-degenerate cell inside `bbox`."""
    cells = geo.tessellate([s.location for s in seeds], bbox)
    kept = [(seed, cell) for seed, cell in zip(seeds, cells) if cell is not None]
    dropped = len(seeds) - len(kept)
    if dropped:
        log.debug("Discarded %d seed(s) without a usable cell", dropped)

    catchments = [Catchment(seed=seed) for seed, _ in kept]
    if not kept or not buildings:
        _fill_centroids(catchments, {})
        return catchments

    cells_gdf = gpd.GeoDataFrame(
        {"cell": np.arange(len(kept))}, geometry=[cell for _, cell in kept], crs=CRS
    )
    lons = np.array([b.center[0] for b in buildings], dtype=float)
    lats = np.array([b.center[1] for b in buildings], dtype=float)
    pops = np.array([b.approx_pop for b in buildings], dtype=float)
    jobs = np.array([b.approx_jobs for b in buildings], dtype=float)
    points = gpd.GeoDataFrame(
        {
            "building": np.arange(len(buildings)),
            "pop": pops,
            "jobs": jobs,
            "pop_lon": pops * lons,
            "pop_lat": pops * lats,
            "job_lon": jobs * lons,
            "job_lat": jobs * lats,
        },
        geometry=gpd.points_from_xy(lons, lats),
        crs=CRS,
    )

    joined = gpd.sjoin(points, cells_gdf, how="inner", predicate="intersects")
    joined = (
        joined.sort_values(["building", "cell"], kind="stable")
        .drop_duplicates(subset="building", keep="first")
    )

    sums = joined.groupby("cell")[["pop", "jobs", "pop_lon", "pop_lat", "job_lon", "job_lat"]].sum()
    members = joined.groupby("cell")["building"].apply(list)

    for cell_id, catchment in enumerate(catchments):
        if cell_id in members.index:
            catchment.building_ids = [buildings[i].id for i in members.loc[cell_id]]
    _fill_centroids(catchments, sums)

    log.info(
        "Tessellation → %d catchment(s), %d/%d building(s) placed",
        len(catchments), len(joined), len(buildings),
    )
    return catchments


def _fill_centroids(catchments: List[Catchment], sums) -> None:
    for cell_id, catchment in enumerate(catchments):
        row: Optional[pd.Series] = None
        if isinstance(sums, pd.DataFrame) and cell_id in sums.index:
            row = sums.loc[cell_id]

        pop = float(row["pop"]) if row is not None else 0.0
        jobs = float(row["jobs"]) if row is not None else 0.0
        catchment.population = int(round(pop))
        catchment.jobs = int(round(jobs))

        fallback = catchment.seed.location
        catchment.pop_centroid = (
            (float(row["pop_lon"]) / pop, float(row["pop_lat"]) / pop) if pop > 0 else fallback
        )
        catchment.job_centroid = (
            (float(row["job_lon"]) / jobs, float(row["job_lat"]) / jobs) if jobs > 0 else fallback
        )


# ─────────────────────────── nodes ─────────────────────────────────────────
def build_neighborhoods(
    catchments: Sequence[Catchment],
    registry: IdRegistry,
    weighting: Optional[DistanceWeightingConfig] = None,
) -> List[Neighborhood]:
    """
    Final demand nodes.  Terminals and job-dominant catchments report zero
    residents; ids go through the registry's display namespace.
    """
    ratio = (weighting or DistanceWeightingConfig()).job_dominance_ratio
    nodes: List[Neighborhood] = []
    job_dominant = 0
    for c in catchments:
        residents = c.population
        if c.is_terminal:
            residents = 0
        elif residents > 0 and c.jobs >= ratio * residents:
            residents = 0
            job_dominant += 1

        if c.is_terminal:
            location = c.seed.location
        elif residents > 0:
            location = c.pop_centroid
        elif c.jobs > 0:
            location = c.job_centroid
        else:
            location = c.seed.location

        nodes.append(
            Neighborhood(
                id=registry.display_id(c.seed.id),
                location=location,
                residents=residents,
                jobs=c.jobs,
                tags=dict(c.seed.tags),
            )
        )
    if job_dominant:
        log.debug("%d job-dominant catchment(s) report zero residents", job_dominant)
    return nodes
