from pathlib import Path

import pytest
import yaml

from transitdemand.config import DemandConfig, DistanceWeightingConfig, load_config


def test_defaults():
    cfg = DemandConfig()
    assert cfg.regions == []
    assert cfg.population_chunking.target_size == 160
    assert cfg.distance_weighting.global_terminal_share == 0.05
    assert cfg.orphan_clustering.cell_size_degrees == 0.004
    assert cfg.clustering.cluster_distance_km["town"] == 0.8
    assert cfg.paths.raw_data_dir == Path("raw_data")


def test_camel_case_keys_and_regions():
    cfg = DemandConfig.from_dict({
        "populationChunking": {"targetSize": 200, "maxConnectionsPerPoint": 10},
        "orphanClustering": {"adoptionThresholdKm": 0.5},
        "outputPrecision": {"decimals": 5},
        "places": [{"code": " AAA ", "name": "Alpha", "bbox": [0, 0, 1, 1]}],
    })
    assert cfg.population_chunking.target_size == 200
    assert cfg.population_chunking.max_connections_per_point == 10
    assert cfg.orphan_clustering.adoption_threshold_km == 0.5
    assert cfg.output_precision.decimals == 5
    assert cfg.regions[0].code == "AAA"
    assert cfg.regions[0].bbox == (0, 0, 1, 1)


def test_unknown_keys_warn(caplog):
    with caplog.at_level("WARNING", logger="transitdemand.config"):
        cfg = DemandConfig.from_dict({"bogus": 1, "paths": {"nope": "x"}})
    assert "bogus" in caplog.text and "nope" in caplog.text
    assert cfg.paths.processed_data_dir == Path("processed_data")


def test_inverted_bbox_rejected():
    with pytest.raises(ValueError):
        DemandConfig.from_dict({"regions": [{"code": "BAD", "bbox": [1, 0, 0, 1]}]})


def test_weighting_lists_must_match_tiers():
    with pytest.raises(ValueError):
        DistanceWeightingConfig(local_quotas=[1, 2])
    with pytest.raises(ValueError):
        DistanceWeightingConfig(terminal_min_share=0.2, terminal_max_share=0.1)


def test_yaml_round_trip(tmp_path):
    cfg = DemandConfig.from_dict({
        "regions": [{"code": "AAA", "bbox": [0, 0, 1, 1], "population": 1000}],
        "roadFilters": {"excludeHighways": ["footway"]},
    })
    path = tmp_path / "config.yaml"
    cfg.save_to_file(path)

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert raw["regions"][0]["bbox"] == [0.0, 0.0, 1.0, 1.0]

    again = DemandConfig.load_from_file(path)
    assert again.regions[0].population == 1000
    assert again.road_filters.exclude_highways == ["footway"]


def test_load_config_resolution(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config().regions == []

    (tmp_path / "config.yaml").write_text(
        "regions:\n  - code: ZZZ\n    bbox: [0, 0, 1, 1]\n", encoding="utf-8"
    )
    assert [r.code for r in load_config().regions] == ["ZZZ"]

    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.json")
