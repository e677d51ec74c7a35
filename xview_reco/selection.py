from __future__ import annotations

import logging
from typing import Iterable, List

from xview_reco.clusters import Cluster, ClusterManager, get_length_squared, sort_by_n_hits
from xview_reco.errors import NotFoundError
from xview_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)


def get_available_clusters(manager: ClusterManager, list_name: str) -> List[Cluster]:
    r"""
    Available clusters of a named list, largest first.

    Parameters
    ----------
    manager : ClusterManager
        Store holding the list.
    list_name : str
        Input cluster list of one view.

    Returns
    -------
    list[Cluster]
        Clusters with ``is_available``, sorted by descending hit count (ties by
        ascending ``cluster_id``) so that processing order is reproducible.

    Raises
    ------
    KeyError
        If ``list_name`` is unknown to the store.
    NotFoundError
        If the list holds no available cluster.
    """
    clusters = [c for c in manager.get_list(list_name) if c.is_available]
    if not clusters:
        raise NotFoundError(f"No available clusters in list '{list_name}'")
    return sort_by_n_hits(clusters)


def select_clean_clusters(
    clusters: Iterable[Cluster],
    hit_pool: HitPool,
    min_length: float,
) -> List[Cluster]:
    r"""
    Keep clusters that are long enough to fit reliably.

    A cluster is *clean* when :math:`L^2 \ge L_{\min}^2`, i.e. a cluster exactly
    at the minimum length is kept. Input order is preserved.
    """
    min_length_sq = float(min_length) * float(min_length)
    clean = [c for c in clusters if get_length_squared(c, hit_pool) >= min_length_sq]
    logger.debug("Selected %d clean clusters (min length %.2f)", len(clean), min_length)
    return clean
