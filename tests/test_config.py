import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import orjson
import pytest

from xview_reco.config import MatchingConfig, load_config, matching_block
from xview_reco.geometry import View

NAMES = {
    "inputClusterListNameU": "clustersU",
    "inputClusterListNameV": "clustersV",
    "inputClusterListNameW": "clustersW",
}


def test_defaults():
    cfg = MatchingConfig.from_mapping(NAMES)
    assert cfg.cluster_min_length == 10.0
    assert cfg.sliding_fit_half_window == 15
    assert cfg.min_x_overlap == 3.0
    assert cfg.min_x_overlap_fraction == 0.8
    assert cfg.max_point_displacement == 1.5
    assert cfg.max_hit_displacement == 5.0
    assert cfg.min_matched_point_fraction == 0.8
    assert cfg.min_matched_hits == 10
    assert cfg.n_sampling_points == 100
    assert cfg.list_names() == {View.U: "clustersU", View.V: "clustersV", View.W: "clustersW"}


def test_camel_case_keys_and_coercion():
    cfg = MatchingConfig.from_mapping({
        **NAMES,
        "clusterMinLength": 5,
        "slidingFitHalfWindow": "20",
        "minMatchedHits": 4.0,
        "maxPointDisplacement": "2.5",
    })
    assert cfg.cluster_min_length == 5.0
    assert cfg.sliding_fit_half_window == 20
    assert cfg.min_matched_hits == 4
    assert cfg.max_point_displacement == 2.5


def test_historical_fraction_spelling_is_accepted():
    cfg = MatchingConfig.from_mapping({**NAMES, "minMatchedPointraction": 0.6})
    assert cfg.min_matched_point_fraction == 0.6
    cfg = MatchingConfig.from_mapping({**NAMES, "MinMatchedPointraction": 0.7})
    assert cfg.min_matched_point_fraction == 0.7


def test_field_names_are_accepted():
    cfg = MatchingConfig.from_mapping({
        "input_cluster_list_name_u": "a",
        "input_cluster_list_name_v": "b",
        "input_cluster_list_name_w": "c",
        "min_x_overlap": 1.0,
    })
    assert cfg.list_name(View.V) == "b"
    assert cfg.min_x_overlap == 1.0


def test_missing_list_name_is_key_error():
    with pytest.raises(KeyError):
        MatchingConfig.from_mapping({"inputClusterListNameU": "clustersU"})


@pytest.mark.parametrize("extra", [
    {"unknownKey": 1},
    {"minXOverlapFraction": 1.5},
    {"maxHitDisplacement": 0.0},
    {"nSamplingPoints": 0},
    {"layerPitch": -1.0},
])
def test_invalid_values_are_value_errors(extra):
    with pytest.raises(ValueError):
        MatchingConfig.from_mapping({**NAMES, **extra})


def test_empty_list_name_is_rejected():
    with pytest.raises(ValueError):
        MatchingConfig("", "clustersV", "clustersW")


def test_load_config_and_matching_block(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"matching": {**NAMES, "minMatchedHits": 8}, "geometry": {"sigmaX": 2.0}}))
    cfg = load_config(path)
    assert MatchingConfig.from_mapping(matching_block(cfg)).min_matched_hits == 8

    flat = {**NAMES, "geometry": {"sigmaX": 2.0}}
    assert "geometry" not in matching_block(flat)


def test_load_config_rejects_bad_json(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ValueError):
        load_config(bad)

    array = tmp_path / "array.json"
    array.write_text("[1, 2]")
    with pytest.raises(ValueError):
        load_config(array)
