import json
from collections import defaultdict

import pytest

from transitdemand import InputMissingError
from transitdemand.config import DemandConfig
from transitdemand.flows import round_half_up
from transitdemand.pipeline import run_all, run_region

REGION = {"code": "AAA", "name": "Testland", "bbox": [-0.05, -0.03, 0.07, 0.05]}


def grid(make_way, prefix, lon0, lat0, n, step, size, tags):
    return [
        make_way(f"{prefix}{i}-{j}", lon0 + i * step, lat0 + j * step, size, tags)
        for i in range(n)
        for j in range(n)
    ]


@pytest.fixture
def raw_region(tmp_path, make_way):
    raw = tmp_path / "raw" / "AAA"
    raw.mkdir(parents=True)

    buildings = (
        grid(make_way, "v", 0.0, 0.0, 8, 0.001, 0.0002, {"building": "house"})
        + grid(make_way, "s", 0.03, 0.0, 6, 0.001, 0.0002, {"building": "apartments"})
        + grid(make_way, "o", -0.03, 0.03, 4, 0.0005, 0.0002, {"building": "house", "addr:city": "Outer"})
        + grid(make_way, "w", 0.015, 0.005, 2, 0.002, 0.0005, {"building": "office"})
        + [make_way("term", 0.05, 0.02, 0.002, {"building": "yes", "aeroway": "terminal"})]
        + [{"id": "junk", "tags": {"building": "house"}, "geometry": [{"lat": 0, "lon": 0}]}]
    )
    places = [
        {"type": "node", "id": 1, "lat": 0.0035, "lon": 0.0035, "tags": {"place": "village", "name": "Vee"}},
        {"type": "node", "id": 2, "lat": 0.0025, "lon": 0.0325, "tags": {"place": "suburb", "name": "Ess"}},
        {"type": "node", "id": 3, "lat": 0.021, "lon": 0.051, "tags": {"aeroway": "aerodrome", "iata": "TST"}},
        make_way("t1", 0.05, 0.02, 0.002, {"aeroway": "terminal", "name": "Main"}),
    ]
    roads = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"highway": "primary"},
             "geometry": {"type": "LineString", "coordinates": [[0, 0], [0.03, 0]]}},
            {"type": "Feature", "properties": {"highway": "footway"},
             "geometry": {"type": "LineString", "coordinates": [[0, 0], [0.0001, 0]]}},
        ],
    }
    (raw / "buildings.json").write_text(json.dumps(buildings), encoding="utf-8")
    (raw / "places.json").write_text(json.dumps({"elements": places}), encoding="utf-8")
    (raw / "roads.geojson").write_text(json.dumps(roads), encoding="utf-8")
    return tmp_path


def make_config(root, out="processed", **extra):
    return DemandConfig.from_dict({
        "regions": [REGION],
        "paths": {"raw_data_dir": str(root / "raw"), "processed_data_dir": str(root / out)},
        **extra,
    })


def read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_region_end_to_end(raw_region):
    config = make_config(raw_region, roadFilters={"excludeHighways": ["footway"]})
    out = run_region(config.regions[0], config)

    assert sorted(p.name for p in out.iterdir()) == ["buildings_index.json", "demand_data.json", "roads.geojson"]
    demand = read(out / "demand_data.json")
    points = {p["id"]: p for p in demand["points"]}
    pops = demand["pops"]

    assert pops, "expected commute flows"
    assert all(p["jobs"] > 0 or p["residents"] > 0 for p in points.values())

    # flows reference existing nodes and appear in both popIds lists
    per_origin = defaultdict(int)
    for flow in pops:
        assert set(flow) == {"id", "residenceId", "jobId", "size", "drivingDistance", "drivingSeconds"}
        assert 0 < flow["size"] <= 380
        assert flow["id"] in points[flow["residenceId"]]["popIds"]
        assert flow["id"] in points[flow["jobId"]]["popIds"]
        assert abs(flow["drivingSeconds"] - flow["drivingDistance"] * 0.12) <= 1
        per_origin[flow["residenceId"]] += flow["size"]
    for origin, total in per_origin.items():
        assert total <= points[origin]["residents"]

    # terminal node and the global cap
    terminals = [p for p in points.values() if p["tags"].get("terminal") == "true"]
    assert [t["id"] for t in terminals] == ["terminal-0"]
    assert terminals[0]["tags"]["code"] == "TST"
    assert terminals[0]["residents"] == 0
    total_residents = sum(p["residents"] for p in points.values())
    terminal_units = sum(f["size"] for f in pops if f["jobId"] == "terminal-0")
    assert terminal_units <= round_half_up(total_residents * 0.05)

    # the outlying houses were not near any place and became a synthetic node
    assert any(p["tags"].get("name") == "Outer" for p in points.values())

    index = read(out / "buildings_index.json")
    assert index["stats"]["count"] == 64 + 36 + 16 + 4 + 1

    roads = read(out / "roads.geojson")
    assert [f["properties"]["highway"] for f in roads["features"]] == ["primary"]


def test_region_output_is_deterministic(raw_region):
    first = run_region(make_config(raw_region, "one").regions[0], make_config(raw_region, "one"))
    second = run_region(make_config(raw_region, "two").regions[0], make_config(raw_region, "two"))
    for name in ("demand_data.json", "buildings_index.json", "roads.geojson"):
        assert (first / name).read_bytes() == (second / name).read_bytes()


def test_output_precision(raw_region):
    config = make_config(raw_region, outputPrecision={"decimals": 3})
    out = run_region(config.regions[0], config)
    for point in read(out / "demand_data.json")["points"]:
        for coord in point["location"]:
            assert round(coord, 3) == coord


def test_missing_roads_is_not_an_error(raw_region):
    (raw_region / "raw" / "AAA" / "roads.geojson").unlink()
    config = make_config(raw_region)
    out = run_region(config.regions[0], config)
    assert not (out / "roads.geojson").exists()
    assert (out / "demand_data.json").exists()


def test_missing_input_fails_region_without_output(raw_region):
    (raw_region / "raw" / "AAA" / "places.json").unlink()
    config = make_config(raw_region)

    with pytest.raises(InputMissingError):
        run_region(config.regions[0], config)
    assert not (raw_region / "processed" / "AAA").exists()


def test_run_all_reports_failures_and_continues(raw_region):
    config = make_config(raw_region)
    config.regions.append(config.regions[0].model_copy(update={"code": "BBB"}))

    failed = run_all(config)

    assert failed == ["BBB"]
    assert (raw_region / "processed" / "AAA" / "demand_data.json").exists()
    assert not (raw_region / "processed" / "BBB").exists()


def test_run_all_subset_and_unknown_codes(raw_region):
    config = make_config(raw_region)
    assert run_all(config, ["aaa"]) == []
    assert run_all(config, ["ZZZ"]) == ["ZZZ"]


def test_failed_rerun_keeps_previous_output(raw_region, monkeypatch):
    config = make_config(raw_region)
    run_region(config.regions[0], config)

    def explode(*args, **kwargs):
        raise RuntimeError("flows failed")

    monkeypatch.setattr("transitdemand.pipeline.synthesize_flows", explode)
    assert run_all(config) == ["AAA"]
    assert (raw_region / "processed" / "AAA" / "demand_data.json").exists()
