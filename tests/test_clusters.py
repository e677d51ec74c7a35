import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pandas as pd
import pytest

from xview_reco.clusters import (
    ClusterManager,
    ClusterStatus,
    get_cluster_span_x,
    get_length_squared,
    sort_by_n_hits,
)
from xview_reco.errors import ClusterStoreError
from xview_reco.geometry import View
from xview_reco.hit_pool import HitPool


def _pool() -> HitPool:
    return HitPool(pd.DataFrame({
        "hit_id": [1, 2, 3, 4, 5, 6, 7, 8],
        "view": ["U", "U", "U", "U", "U", "V", "V", "V"],
        "x": [0.0, 3.0, 1.0, 2.0, 9.0, 0.0, 1.0, 2.0],
        "z": [0.0, 4.0, 1.0, 2.0, 9.0, 5.0, 5.0, 5.0],
    }))


def test_hit_pool_requires_columns_and_unique_ids():
    with pytest.raises(KeyError, match="Missing required column"):
        HitPool(pd.DataFrame({"hit_id": [1], "view": ["U"], "x": [0.0]}))
    with pytest.raises(ValueError):
        HitPool(pd.DataFrame({"hit_id": [1, 1], "view": ["U", "U"], "x": [0.0, 1.0], "z": [0.0, 0.0]}))


def test_hit_pool_lookups():
    pool = _pool()
    assert len(pool) == 8
    assert 6 in pool and 99 not in pool
    np.testing.assert_allclose(pool.position(2), [3.0, 4.0])
    assert pool.view_of(7) is View.V
    assert pool.hit_ids_in_view(View.V).tolist() == [6, 7, 8]
    assert pool.positions([]).shape == (0, 2)
    with pytest.raises(KeyError):
        pool.get_hit(99)


def test_create_list_assigns_hits_and_owners():
    pool = _pool()
    manager = ClusterManager(pool)
    created = manager.create_list("clustersU", [[1, 2], [3, 4]])
    assert [c.n_hits for c in created] == [2, 2]
    assert manager.current_list_name == "clustersU"
    assert manager.owner_of(3) == created[1].cluster_id
    assert manager.owner_of(5) is None
    assert not pool.is_hit_available(1)
    assert pool.is_hit_available(5)
    assert pool.get_available_hit_count(View.U) == 1
    assert pool.view_statistics()[View.V]["available_hits"] == 3


def test_create_list_keeps_previous_current_list():
    manager = ClusterManager(_pool())
    manager.create_list("clustersU", [[1]])
    manager.create_list("clustersV", [[6, 7]])
    assert manager.current_list_name == "clustersU"
    with pytest.raises(ClusterStoreError):
        manager.create_list("clustersU")


def test_create_cluster_rejects_invalid_groups():
    manager = ClusterManager(_pool())
    manager.create_list("clustersU", [[1, 2]])
    with pytest.raises(ClusterStoreError):
        manager.create_cluster([2, 3])
    with pytest.raises(ClusterStoreError):
        manager.create_cluster([3, 6])
    with pytest.raises(ClusterStoreError):
        manager.create_cluster([])
    with pytest.raises(ClusterStoreError):
        manager.create_cluster([42])


def test_delete_and_remove_release_hits():
    pool = _pool()
    manager = ClusterManager(pool)
    a, b = manager.create_list("clustersU", [[1, 2, 3], [4]])

    manager.remove_from_cluster(a.cluster_id, 2)
    assert a.hit_ids == {1, 3}
    assert pool.is_hit_available(2)
    assert manager.owner_of(2) is None

    with pytest.raises(ClusterStoreError):
        manager.remove_from_cluster(a.cluster_id, 2)
    with pytest.raises(ClusterStoreError):
        manager.remove_from_cluster(b.cluster_id, 4)

    manager.delete_cluster(b.cluster_id)
    assert pool.is_hit_available(4)
    assert [c.cluster_id for c in manager.get_list("clustersU")] == [a.cluster_id]
    with pytest.raises(ClusterStoreError):
        manager.get_cluster(b.cluster_id)


def test_temporary_list_saved_into_target():
    manager = ClusterManager(_pool())
    (first,) = manager.create_list("clustersU", [[1, 2]])
    temp = manager.create_temporary_list_and_set_current()
    assert manager.current_list_name == temp
    new = manager.create_cluster([3, 4])
    manager.save_list(temp, "clustersU")

    assert not manager.has_list(temp)
    assert manager.current_list_name == "clustersU"
    assert [c.cluster_id for c in manager.get_list("clustersU")] == [first.cluster_id, new.cluster_id]
    with pytest.raises(KeyError):
        manager.save_list(temp, "clustersU")


def test_unknown_list_raises_key_error():
    manager = ClusterManager(_pool())
    with pytest.raises(KeyError):
        manager.get_list("nope")
    with pytest.raises(KeyError):
        manager.replace_current_list("nope")


def test_cluster_extent_helpers():
    manager = ClusterManager(_pool())
    (cluster,) = manager.create_list("clustersU", [[1, 2]])
    assert get_length_squared(cluster, manager.hit_pool) == pytest.approx(25.0)
    assert get_cluster_span_x(cluster, manager.hit_pool) == (0.0, 3.0)


def test_sort_by_n_hits_breaks_ties_by_id():
    manager = ClusterManager(_pool())
    small, big1, big2 = manager.create_list("clustersU", [[5], [1, 2], [3, 4]])
    manager.set_status(small.cluster_id, ClusterStatus.CONSUMED)
    ordered = sort_by_n_hits([small, big2, big1])
    assert [c.cluster_id for c in ordered] == [big1.cluster_id, big2.cluster_id, small.cluster_id]
    assert not small.is_available
