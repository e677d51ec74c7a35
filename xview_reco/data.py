from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from xview_reco.clusters import ClusterManager, ClusterStatus
from xview_reco.geometry import View
from xview_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: Tuple[str, ...] = ("hit_id", "view", "x", "z", "cluster_id")
DEFAULT_LIST_NAMES: Dict[View, str] = {view: f"clusters{view.value}" for view in View}


def event_from_frame(
    hits: pd.DataFrame,
    list_names: Mapping[View, str],
) -> Tuple[HitPool, ClusterManager]:
    r"""
    Build the hit arena and the per-view cluster lists from a hits table.

    Parameters
    ----------
    hits : pandas.DataFrame
        Columns ``hit_id, view, x, z, cluster_id``. ``cluster_id`` labels are
        per view; negative labels mark unclustered hits. An optional boolean
        ``available`` column flags clusters already consumed downstream: a
        cluster with any ``False`` row is created with
        :attr:`ClusterStatus.CONSUMED`.
    list_names : mapping View -> str
        Name of the cluster list created for each view.

    Returns
    -------
    (HitPool, ClusterManager)

    Raises
    ------
    KeyError
        If a required column is missing.
    ValueError
        If a view label is not ``U``, ``V`` or ``W``.

    Notes
    -----
    Clusters are created in ascending label order within each view, so
    identical input tables give identical cluster ids.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in hits.columns]
    if missing:
        raise KeyError(f"Missing required column(s): {', '.join(missing)}")

    frame = hits.copy()
    frame["view"] = [View.parse(v).value for v in frame["view"].tolist()]
    frame["cluster_id"] = frame["cluster_id"].to_numpy(dtype=np.int64)

    hit_pool = HitPool(frame.reset_index(drop=True))
    manager = ClusterManager(hit_pool)

    has_status = "available" in frame.columns
    for view in View:
        rows = frame[(frame["view"] == view.value) & (frame["cluster_id"] >= 0)]
        groups: List[List[int]] = []
        consumed: List[bool] = []
        for _, g in rows.groupby("cluster_id", sort=True):
            groups.append(g["hit_id"].astype(np.int64).tolist())
            consumed.append(has_status and not bool(g["available"].astype(bool).all()))
        created = manager.create_list(list_names[view], groups)
        for cluster, is_consumed in zip(created, consumed):
            if is_consumed:
                manager.set_status(cluster.cluster_id, ClusterStatus.CONSUMED)
        logger.debug("View %s: %d clusters into '%s'", view.value, len(created), list_names[view])

    logger.info(
        "Loaded %d hits in %d clusters",
        len(hit_pool),
        sum(len(manager.get_list(n)) for n in list_names.values()),
    )
    return hit_pool, manager


def load_event(
    path: str | Path,
    list_names: Optional[Mapping[View, str]] = None,
) -> Tuple[HitPool, ClusterManager]:
    r"""
    Read a hits CSV and build the event (see :func:`event_from_frame`).

    List names default to ``clustersU``, ``clustersV`` and ``clustersW``.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"No hits file at {p}")
    hits = pd.read_csv(p)
    return event_from_frame(hits, DEFAULT_LIST_NAMES if list_names is None else list_names)


def clusters_to_frame(manager: ClusterManager, list_names: Iterable[str]) -> pd.DataFrame:
    r"""
    Export the current hit → cluster assignment.

    Returns
    -------
    pandas.DataFrame
        One row per hit of the pool with columns ``hit_id, view, x, z,
        cluster_id``; hits outside the named lists get ``cluster_id = -1``.
        Rows are sorted by ``hit_id``.
    """
    owner: Dict[int, int] = {}
    for name in list_names:
        for cluster in manager.get_list(name):
            for h in cluster.hit_ids:
                owner[h] = cluster.cluster_id

    base = manager.hit_pool.hits[["hit_id", "view", "x", "z"]]
    ids = base["hit_id"].to_numpy(dtype=np.int64)
    out = base.assign(cluster_id=np.fromiter((owner.get(int(h), -1) for h in ids), dtype=np.int64, count=ids.size))
    return out.sort_values("hit_id", kind="mergesort").reset_index(drop=True)


def cluster_groups(manager: ClusterManager, list_name: str) -> List[Tuple[int, ...]]:
    r"""
    Hit-id groups of a list, independent of cluster ids: each group is a sorted
    tuple and the list of groups is sorted.
    """
    return sorted(tuple(sorted(c.hit_ids)) for c in manager.get_list(list_name))
