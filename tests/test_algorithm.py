import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pandas as pd
import pytest

from xview_reco.algorithm import CrossViewTrackMatching
from xview_reco.config import MatchingConfig
from xview_reco.data import DEFAULT_LIST_NAMES, cluster_groups, clusters_to_frame, event_from_frame
from xview_reco.geometry import View, WireGeometry
from xview_reco.matching import PairOutcome
from xview_reco.metrics import check_exclusive_membership, cluster_truth_metrics
from xview_reco.utils import jitter_hits, simulate_track_hits, split_cluster, unclustered_noise

CONFIG = MatchingConfig("clustersU", "clustersV", "clustersW")
GEO = WireGeometry()


def _run(frame):
    hit_pool, manager = event_from_frame(frame, DEFAULT_LIST_NAMES)
    result = CrossViewTrackMatching(CONFIG, GEO).run(manager)
    return manager, result


def _groups(manager):
    return {view: cluster_groups(manager, DEFAULT_LIST_NAMES[view]) for view in View}


def test_consistent_triple_keeps_hit_groups():
    frame = simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0))
    manager, result = _run(frame)

    assert result.status == "success"
    assert result.n_fits == 3
    assert _groups(manager) == {
        View.U: [tuple(range(0, 16))],
        View.V: [tuple(range(16, 32))],
        View.W: [tuple(range(32, 48))],
    }
    for view in View:
        assert len(result.accepted_records(view)) == 1
        assert result.summaries[view].n_clusters_deleted == 1
        assert result.summaries[view].n_clusters_created == 1
        assert result.summaries[view].n_ambiguous_hits == 0
    assert check_exclusive_membership(manager, DEFAULT_LIST_NAMES.values()) == 48


def test_broken_cluster_is_merged():
    frame = simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0))
    frame = split_cluster(frame, View.W, 0, 8.0, 1)
    manager, result = _run(frame)

    groups = _groups(manager)
    assert groups[View.W] == [tuple(range(32, 48))]
    assert groups[View.U] == [tuple(range(0, 16))]
    assert result.summaries[View.W].n_clusters_deleted == 2
    assert result.summaries[View.W].n_clusters_created == 1
    # the W pieces are too short to fit, so only the (U,V) pass runs
    assert not result.summaries[View.U].changed
    assert result.n_fits == 2


def test_wide_target_cluster_is_left_alone():
    frame = pd.concat([
        simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0), views=[View.U, View.V]),
        simulate_track_hits(GEO, (0.0, 0.0, 10.0), (31.0, 0.0, 10.0), first_hit_id=100, views=[View.W]),
    ], ignore_index=True)
    manager, result = _run(frame)

    assert [r.outcome for r in result.records[View.W]] == [PairOutcome.BAD_CLUSTER_SHAPE]
    assert [r.outcome for r in result.records[View.U]] == [PairOutcome.NO_OVERLAP]
    for view in View:
        assert not result.summaries[view].changed
    assert cluster_groups(manager, "clustersW") == [tuple(range(100, 132))]


def test_two_tracks_only_pair_with_themselves():
    frame = pd.concat([
        simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0), cluster_id=0),
        simulate_track_hits(GEO, (0.0, 0.0, 60.0), (15.0, 0.0, 60.0), first_hit_id=100, cluster_id=1),
    ], ignore_index=True)
    before = event_from_frame(frame, DEFAULT_LIST_NAMES)[1]
    manager, result = _run(frame)

    assert _groups(manager) == _groups(before)
    for view in View:
        assert len(result.records[view]) == 4
        assert len(result.accepted_records(view)) == 2
        assert result.associations[view].ambiguous_hits() == []


def test_view_without_available_clusters_changes_nothing():
    frame = simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0))
    frame["available"] = frame["view"] != "V"
    hit_pool, manager = event_from_frame(frame, DEFAULT_LIST_NAMES)
    ids_before = {name: [c.cluster_id for c in manager.get_list(name)] for name in DEFAULT_LIST_NAMES.values()}
    current_before = manager.current_list_name

    result = CrossViewTrackMatching(CONFIG, GEO).run(manager)

    assert result.status == "not_found"
    assert result.missing_views == [View.V]
    assert manager.current_list_name == current_before
    assert result.n_fits == 0
    assert result.summaries == {}
    assert all(len(result.associations[view]) == 0 for view in View)
    assert all(not result.records.get(view) for view in View)
    for name, ids in ids_before.items():
        assert [c.cluster_id for c in manager.get_list(name)] == ids
    assert result.get_statistics()["status"] == "not_found"


def test_runs_are_deterministic():
    rng = np.random.default_rng(7)
    frame = pd.concat([
        simulate_track_hits(GEO, (0.0, 0.0, 10.0), (20.0, 0.0, 12.0), cluster_id=0),
        simulate_track_hits(GEO, (2.0, 5.0, 40.0), (30.0, 3.0, 45.0), first_hit_id=200, cluster_id=1),
        unclustered_noise(20, View.W, (0.0, 30.0), (0.0, 50.0), first_hit_id=500, rng=rng),
    ], ignore_index=True)
    frame = jitter_hits(split_cluster(frame, View.U, 1, 15.0, 7), sigma=0.1, rng=rng)

    manager_1, result_1 = _run(frame)
    manager_2, result_2 = _run(frame)

    names = list(DEFAULT_LIST_NAMES.values())
    pd.testing.assert_frame_equal(clusters_to_frame(manager_1, names), clusters_to_frame(manager_2, names))
    assert result_1.get_statistics() == result_2.get_statistics()
    for view in View:
        outcomes_1 = [(r.match_id, r.cluster_id_a, r.cluster_id_b, r.outcome) for r in result_1.records[view]]
        outcomes_2 = [(r.match_id, r.cluster_id_a, r.cluster_id_b, r.outcome) for r in result_2.records[view]]
        assert outcomes_1 == outcomes_2
    check_exclusive_membership(manager_1, names)


def test_hits_claimed_by_two_pairs_stay_in_place():
    frame = pd.concat([
        simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0)),
        simulate_track_hits(GEO, (0.5, 0.0, 10.0), (15.5, 0.0, 10.0), first_hit_id=100,
                            cluster_id=1, views=[View.U]),
    ], ignore_index=True)
    manager, result = _run(frame)

    w_maps = result.associations[View.W]
    assert [r.match_id for r in result.accepted_records(View.W)] == [1, 2]
    for hit_id in range(32, 48):
        assert w_maps.matches_for_hit(hit_id) == {1, 2}
    assert not result.summaries[View.W].changed
    assert result.summaries[View.W].n_ambiguous_hits == 16
    assert cluster_groups(manager, "clustersW") == [tuple(range(32, 48))]
    assert not result.summaries[View.V].changed
    # both U segments follow the (V,W) projection and are merged
    assert cluster_groups(manager, "clustersU") == [tuple(list(range(0, 16)) + list(range(100, 116)))]


def test_repair_raises_completeness_and_keeps_purity():
    frame = simulate_track_hits(GEO, (0.0, 0.0, 10.0), (15.0, 0.0, 10.0), particle_id=4)
    frame = split_cluster(frame, View.W, 0, 8.0, 1)
    truth = frame[["hit_id", "particle_id"]]
    before = cluster_truth_metrics(frame, truth)

    manager, _ = _run(frame)
    after = cluster_truth_metrics(clusters_to_frame(manager, DEFAULT_LIST_NAMES.values()), truth)

    assert before["completeness"] == pytest.approx(40.0 / 48.0)
    assert after["completeness"] == pytest.approx(1.0)
    assert after["completeness"] > before["completeness"]
    assert before["purity"] == pytest.approx(1.0)
    assert after["purity"] == pytest.approx(1.0)
    assert after["n_hits"] == before["n_hits"] == 48
