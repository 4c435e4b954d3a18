import pytest
from shapely.geometry import Point

from transitdemand.geometry import DEFAULT_GEOMETRY
from transitdemand.models import (
    CODE_TAG,
    TERMINAL_TAG,
    BBox,
    Building,
    Catchment,
    IdRegistry,
    SeedPoint,
)
from transitdemand.tessellation import build_catchments, build_neighborhoods

FRAME = BBox(0.0, 0.0, 1.0, 1.0)


def building(building_id, lon, lat, pop=0, jobs=0):
    return Building(id=building_id, ring=[], tags={}, center=(lon, lat), approx_pop=pop, approx_jobs=jobs)


def test_buildings_credited_to_containing_cell():
    seeds = [SeedPoint("a", (0.25, 0.5)), SeedPoint("b", (0.75, 0.5))]
    buildings = [
        building("r1", 0.1, 0.5, pop=10),
        building("j1", 0.9, 0.5, jobs=20),
        building("r2", 0.2, 0.4, pop=30),
    ]
    west, east = build_catchments(seeds, buildings, FRAME)

    assert (west.population, west.jobs) == (40, 0)
    assert west.pop_centroid == pytest.approx((0.175, 0.425))
    assert west.job_centroid == (0.25, 0.5)
    assert sorted(west.building_ids) == ["r1", "r2"]

    assert (east.population, east.jobs) == (0, 20)
    assert east.job_centroid == pytest.approx((0.9, 0.5))
    assert east.pop_centroid == (0.75, 0.5)


def test_single_seed_owns_whole_frame():
    [only] = build_catchments([SeedPoint("a", (0.5, 0.5))], [building("r", 0.9, 0.9, pop=7)], FRAME)
    assert only.population == 7


def test_duplicate_seed_gets_no_cell():
    seeds = [SeedPoint("a", (0.3, 0.3)), SeedPoint("dup", (0.3, 0.3)), SeedPoint("b", (0.7, 0.7))]
    catchments = build_catchments(seeds, [building("r", 0.31, 0.31, pop=5)], FRAME)
    assert [c.seed.id for c in catchments] == ["a", "b"]
    assert catchments[0].population == 5


def test_building_outside_frame_is_ignored():
    seeds = [SeedPoint("a", (0.25, 0.5)), SeedPoint("b", (0.75, 0.5))]
    catchments = build_catchments(seeds, [building("far", 5.0, 5.0, pop=99)], FRAME)
    assert sum(c.population for c in catchments) == 0


def test_every_building_counted_once():
    seeds = [SeedPoint(f"s{i}", (0.1 + 0.2 * i, 0.1 + 0.15 * i)) for i in range(5)]
    buildings = [building(f"b{i}", (i % 10) / 10 + 0.05, (i // 10) / 10 + 0.05, pop=1) for i in range(100)]
    catchments = build_catchments(seeds, buildings, FRAME)
    assert sum(c.population for c in catchments) == 100
    ids = [bid for c in catchments for bid in c.building_ids]
    assert len(ids) == len(set(ids)) == 100


def test_tessellate_cells_cover_frame():
    cells = DEFAULT_GEOMETRY.tessellate([(0.2, 0.2), (0.8, 0.3), (0.5, 0.9)], FRAME)
    assert all(cell is not None for cell in cells)
    assert sum(cell.area for cell in cells) == pytest.approx(1.0)
    assert cells[0].contains(Point(0.2, 0.2))


# ───────────────────────── nodes ──────────────────────────────────────────
def catchment(seed, population=0, jobs=0, pop_centroid=(1.0, 1.0), job_centroid=(2.0, 2.0)):
    return Catchment(seed=seed, population=population, jobs=jobs,
                     pop_centroid=pop_centroid, job_centroid=job_centroid)


def test_neighborhood_location_and_residents():
    registry = IdRegistry()
    for raw in ("home", "office", "mixed", "empty"):
        registry.reserve(raw)

    nodes = build_neighborhoods([
        catchment(SeedPoint("home", (0, 0)), population=100, jobs=10),
        catchment(SeedPoint("office", (0, 0)), population=10, jobs=50),
        catchment(SeedPoint("mixed", (0, 0)), population=10, jobs=49),
        catchment(SeedPoint("empty", (9.0, 9.0))),
    ], registry)

    assert [(n.id, n.residents, n.jobs) for n in nodes] == [
        ("home", 100, 10), ("office", 0, 50), ("mixed", 10, 49), ("empty", 0, 0),
    ]
    assert nodes[0].location == (1.0, 1.0)
    assert nodes[1].location == (2.0, 2.0)
    assert nodes[3].location == (9.0, 9.0)


def test_terminal_node_uses_display_id_and_seed_location():
    registry = IdRegistry()
    raw = registry.reserve_terminal("way/123")
    seed = SeedPoint(raw, (3.0, 4.0), tags={TERMINAL_TAG: "true", CODE_TAG: "XYZ", "name": "XYZ Terminal 1"})

    [node] = build_neighborhoods([catchment(seed, population=25, jobs=300)], registry)
    assert node.id == "terminal-0"
    assert node.residents == 0
    assert node.location == (3.0, 4.0)
    assert node.terminal_key == "XYZ"
    assert node.to_dict()["tags"][TERMINAL_TAG] == "true"


def test_registry_suffixes_collisions():
    registry = IdRegistry()
    assert registry.reserve("p1") == "p1"
    assert registry.reserve("p1") == "p1~2"
    assert registry.reserve_terminal("t") == "t"
    assert registry.display_id("t") == "terminal-0"
    assert registry.raw_ids("terminal-0") == ["t"]
    assert "p1~2" in registry and len(registry) == 3
