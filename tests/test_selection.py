import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pandas as pd
import pytest

from xview_reco.clusters import ClusterManager, ClusterStatus
from xview_reco.errors import NotFoundError
from xview_reco.hit_pool import HitPool
from xview_reco.selection import get_available_clusters, select_clean_clusters


def _manager() -> ClusterManager:
    hits = pd.DataFrame({
        "hit_id": list(range(1, 12)),
        "view": ["W"] * 11,
        "x": [0.0, 10.0, 20.0, 0.0, 9.99, 30.0, 31.0, 32.0, 33.0, 34.0, 50.0],
        "z": [0.0] * 11,
    })
    manager = ClusterManager(HitPool(hits))
    manager.create_list("clustersW", [[1, 2, 3], [4, 5], [6, 7, 8], [9, 10], [11]])
    return manager


def test_available_clusters_largest_first_ties_by_id():
    manager = _manager()
    ids = [c.cluster_id for c in get_available_clusters(manager, "clustersW")]
    assert ids == [1, 3, 2, 4, 5]


def test_consumed_clusters_are_skipped():
    manager = _manager()
    manager.set_status(3, ClusterStatus.CONSUMED)
    ids = [c.cluster_id for c in get_available_clusters(manager, "clustersW")]
    assert 3 not in ids
    assert ids == [1, 2, 4, 5]


def test_no_available_clusters_is_not_found():
    manager = _manager()
    for cluster in manager.get_list("clustersW"):
        manager.set_status(cluster.cluster_id, ClusterStatus.CONSUMED)
    with pytest.raises(NotFoundError):
        get_available_clusters(manager, "clustersW")


def test_unknown_list_propagates_key_error():
    with pytest.raises(KeyError):
        get_available_clusters(_manager(), "clustersX")


def test_clean_selection_keeps_minimum_length_and_order():
    manager = _manager()
    available = get_available_clusters(manager, "clustersW")
    clean = select_clean_clusters(available, manager.hit_pool, 10.0)
    # cluster 1 spans 20, cluster 2 spans 9.99, cluster 3 spans 2
    assert [c.cluster_id for c in clean] == [1]

    clean = select_clean_clusters(available, manager.hit_pool, 9.99)
    assert [c.cluster_id for c in clean] == [1, 2]

    assert select_clean_clusters([], manager.hit_pool, 1.0) == []
