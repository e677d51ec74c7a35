import sys
import logging
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import matplotlib
matplotlib.use("Agg")

import orjson
import pandas as pd
import pytest

from xview_reco.data import DEFAULT_LIST_NAMES, event_from_frame
from xview_reco.geometry import View, WireGeometry
from xview_reco.main import build_parser, build_settings, main
from xview_reco.matching import AssociationMaps, PairwiseTrackMatcher
from xview_reco.config import MatchingConfig
from xview_reco.fitting import FitCache
from xview_reco.utils import simulate_track_hits, split_cluster


def _write_inputs(tmp_path):
    frame = simulate_track_hits(WireGeometry(), (0.0, 0.0, 10.0), (15.0, 0.0, 10.0), particle_id=3)
    frame = split_cluster(frame, View.W, 0, 8.0, 1)
    hits_path = tmp_path / "hits.csv"
    frame.to_csv(hits_path, index=False)

    cfg_path = tmp_path / "config.json"
    cfg_path.write_bytes(orjson.dumps({
        "matching": {
            "inputClusterListNameU": "clustersU",
            "inputClusterListNameV": "clustersV",
            "inputClusterListNameW": "clustersW",
        },
        "geometry": {"wireAngleU": 60.0, "wireAngleV": -60.0, "wireAngleW": 0.0},
    }))
    return hits_path, cfg_path


def test_parser_defaults():
    args = build_parser().parse_args(["-f", "hits.csv"])
    assert args.config == "config.json"
    assert args.output is None
    assert not args.plot


def test_build_settings_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_settings(tmp_path / "nope.json")


def test_cli_repairs_broken_cluster(tmp_path):
    hits_path, cfg_path = _write_inputs(tmp_path)
    out_path = tmp_path / "out.csv"

    main(["-f", str(hits_path), "--config", str(cfg_path), "-o", str(out_path)])

    out = pd.read_csv(out_path)
    assert len(out) == 48
    assert (out["cluster_id"] >= 0).all()
    assert out.loc[out["view"] == "W", "cluster_id"].nunique() == 1
    assert out.groupby("view")["cluster_id"].nunique().to_dict() == {"U": 1, "V": 1, "W": 1}


def test_plots_render_headless(tmp_path):
    import xview_reco.plotting as xv_plot

    geo = WireGeometry()
    config = MatchingConfig("clustersU", "clustersV", "clustersW")
    hit_pool, manager = event_from_frame(
        simulate_track_hits(geo, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0)), DEFAULT_LIST_NAMES
    )
    xv_plot.plot_view_clusters(manager, DEFAULT_LIST_NAMES, title="event", show=False,
                               save_path=tmp_path / "event.png")
    assert (tmp_path / "event.png").is_file()

    lists = {view: manager.get_list(DEFAULT_LIST_NAMES[view]) for view in View}
    cache = FitCache(config.sliding_fit_half_window)
    for view in View:
        cache.add_clusters(lists[view], hit_pool)
    records = PairwiseTrackMatcher(config, geo).match(
        cache, lists[View.U], lists[View.V], lists[View.W], hit_pool, AssociationMaps(View.W)
    )
    xv_plot.plot_pair_match(records[0], hit_pool, show=False, save_path=tmp_path / "match.png")
    assert (tmp_path / "match.png").is_file()
    assert xv_plot.plot_accepted_matches(records, hit_pool, max_plots=3, show=False) == 1


def test_cli_logs_truth_scores_and_assignment_ratio(tmp_path, caplog):
    hits_path, cfg_path = _write_inputs(tmp_path)
    caplog.set_level(logging.INFO)

    main(["-f", str(hits_path), "--config", str(cfg_path)])

    messages = [r.getMessage() for r in caplog.records]
    assert "Purity 1.0000 -> 1.0000 | completeness 0.8333 -> 1.0000" in messages
    assert "Input assignment ratio: 1.0000 of 48 hits clustered" in messages
    assert "Output assignment ratio: 1.0000" in messages
