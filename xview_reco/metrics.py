from __future__ import annotations

from typing import Dict, Iterable, Mapping

import numpy as np
import pandas as pd

from xview_reco.clusters import ClusterManager, get_length
from xview_reco.errors import InvariantViolation
from xview_reco.matching import AssociationMaps


def cluster_statistics(manager: ClusterManager, list_name: str) -> Dict[str, float]:
    r"""
    Summary of one cluster list.

    Returns
    -------
    dict
        ``n_clusters``, ``n_available``, ``n_hits``, ``mean_hits``,
        ``max_hits`` and ``mean_length`` (bounding-box diagonal). All zero for
        an empty list.

    Raises
    ------
    KeyError
        If ``list_name`` is unknown.
    """
    clusters = manager.get_list(list_name)
    if not clusters:
        return {
            "n_clusters": 0, "n_available": 0, "n_hits": 0,
            "mean_hits": 0.0, "max_hits": 0, "mean_length": 0.0,
        }
    sizes = np.fromiter((c.n_hits for c in clusters), dtype=np.int64, count=len(clusters))
    lengths = np.fromiter((get_length(c, manager.hit_pool) for c in clusters), dtype=np.float64, count=len(clusters))
    return {
        "n_clusters": len(clusters),
        "n_available": sum(1 for c in clusters if c.is_available),
        "n_hits": int(sizes.sum()),
        "mean_hits": float(sizes.mean()),
        "max_hits": int(sizes.max()),
        "mean_length": float(lengths.mean()),
    }


def association_statistics(associations: AssociationMaps) -> Dict[str, int]:
    r"""
    Counts of one view's associations: ``n_matches``, ``n_claimed_hits``,
    ``n_pairings`` and ``n_ambiguous_hits``.
    """
    return {
        "n_matches": len(associations.match_to_hits),
        "n_claimed_hits": len(associations.hit_to_matches),
        "n_pairings": len(associations),
        "n_ambiguous_hits": len(associations.ambiguous_hits()),
    }


def check_exclusive_membership(manager: ClusterManager, list_names: Iterable[str]) -> int:
    r"""
    Verify that every hit of the named lists lies in exactly one cluster and is
    marked as assigned in the hit pool.

    Returns
    -------
    int
        Number of clustered hits checked.

    Raises
    ------
    InvariantViolation
        On a hit shared by two clusters, a cluster of mixed views, an empty
        cluster, or a member hit the pool reports as available.
    """
    seen: Dict[int, int] = {}
    hit_pool = manager.hit_pool
    for name in list_names:
        for cluster in manager.get_list(name):
            if not cluster.hit_ids:
                raise InvariantViolation(f"Cluster {cluster.cluster_id} in '{name}' is empty")
            for h in cluster.sorted_hit_ids():
                if h in seen:
                    raise InvariantViolation(
                        f"Hit {h} is in clusters {seen[h]} and {cluster.cluster_id}"
                    )
                seen[h] = cluster.cluster_id
                if hit_pool.view_of(h) is not cluster.view:
                    raise InvariantViolation(
                        f"Hit {h} of view {hit_pool.view_of(h).value} in cluster "
                        f"{cluster.cluster_id} of view {cluster.view.value}"
                    )
                if hit_pool.is_hit_available(h):
                    raise InvariantViolation(f"Hit {h} is clustered but marked available")
    return len(seen)


def cluster_truth_metrics(
    assignments: pd.DataFrame,
    truth: pd.DataFrame,
    truth_column: str = "particle_id",
) -> Mapping[str, float]:
    r"""
    Hit-weighted purity and completeness of a clustering against truth labels.

    For cluster :math:`c` with :math:`n_c` hits, of which :math:`n_{c,p}`
    belong to particle :math:`p`, and for particle :math:`p` with
    :math:`m_{p,v}` hits in view :math:`v`,

    .. math::

        \text{purity} = \frac{\sum_c \max_p n_{c,p}}{\sum_c n_c},\qquad
        \text{completeness} = \frac{\sum_{p,v} \max_{c \in v} n_{c,p}}{\sum_{p,v} m_{p,v}}.

    Only clustered hits (``cluster_id >= 0``) with a truth label
    (``truth_column >= 0``) take part.

    Parameters
    ----------
    assignments : pandas.DataFrame
        Columns ``hit_id, view, cluster_id``.
    truth : pandas.DataFrame
        Columns ``hit_id`` and ``truth_column``.
    truth_column : str, optional
        Name of the truth label column (default ``'particle_id'``).

    Returns
    -------
    dict
        ``{'purity', 'completeness', 'n_hits'}``; ratios are ``0.0`` when no
        hit takes part.

    Raises
    ------
    KeyError
        If required columns are missing.
    """
    if not {"hit_id", "view", "cluster_id"} <= set(assignments.columns):
        raise KeyError("assignments must contain 'hit_id', 'view' and 'cluster_id' columns.")
    if not {"hit_id", truth_column} <= set(truth.columns):
        raise KeyError(f"truth must contain 'hit_id' and '{truth_column}' columns.")

    df = assignments[["hit_id", "view", "cluster_id"]].merge(
        truth[["hit_id", truth_column]], on="hit_id", how="inner"
    )
    df = df[(df["cluster_id"] >= 0) & (df[truth_column] >= 0)]
    if df.empty:
        return {"purity": 0.0, "completeness": 0.0, "n_hits": 0}

    counts = df.groupby(["view", "cluster_id", truth_column], sort=True).size()
    purity_num = counts.groupby(level=["view", "cluster_id"]).max().sum()
    completeness_num = counts.groupby(level=["view", truth_column]).max().sum()
    n = float(len(df))
    return {
        "purity": float(purity_num) / n,
        "completeness": float(completeness_num) / n,
        "n_hits": int(len(df)),
    }
