from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from xview_reco.clusters import Cluster, ClusterManager
from xview_reco.config import MatchingConfig
from xview_reco.errors import NotFoundError
from xview_reco.fitting import FitCache
from xview_reco.geometry import View, WireGeometry
from xview_reco.matching import AssociationMaps, PairMatchRecord, PairwiseTrackMatcher, run_matching_passes
from xview_reco.rewriter import ClusterRewriter, RewriteSummary
from xview_reco.selection import get_available_clusters, select_clean_clusters

logger = logging.getLogger(__name__)


@dataclass
class MatchingResult:
    r"""
    Outcome of one processing cycle.

    Attributes
    ----------
    missing_views : list[View]
        Views that had no available clusters; they contributed nothing.
    associations : dict[View, AssociationMaps]
        Accumulated associations per target view.
    records : dict[View, list[PairMatchRecord]]
        Tested pairs per target view.
    summaries : dict[View, RewriteSummary]
        Rewrite outcome per view.
    n_fits : int
        Size of the fit cache.
    """
    missing_views: List[View] = field(default_factory=list)
    associations: Dict[View, AssociationMaps] = field(default_factory=dict)
    records: Dict[View, List[PairMatchRecord]] = field(default_factory=dict)
    summaries: Dict[View, RewriteSummary] = field(default_factory=dict)
    n_fits: int = 0

    @property
    def status(self) -> str:
        return "not_found" if self.missing_views else "success"

    def accepted_records(self, view: View) -> List[PairMatchRecord]:
        return [r for r in self.records.get(view, []) if r.accepted]

    def get_statistics(self) -> Dict[str, object]:
        r"""
        Flat summary: status, fit count, per-view tested/accepted pairs and
        rewrite counts.
        """
        stats: Dict[str, object] = {"status": self.status, "fits": self.n_fits}
        for view in View:
            recs = self.records.get(view, [])
            stats[f"pairs_tested_{view.value}"] = len(recs)
            stats[f"pairs_accepted_{view.value}"] = sum(1 for r in recs if r.accepted)
            summary = self.summaries.get(view)
            if summary is not None:
                stats[f"hits_moved_{view.value}"] = summary.n_hits_moved
                stats[f"clusters_created_{view.value}"] = summary.n_clusters_created
                stats[f"ambiguous_hits_{view.value}"] = summary.n_ambiguous_hits
        return stats


class CrossViewTrackMatching:
    r"""
    Repair 2D clusters of three views using cross-view track consistency.

    Pipeline
    --------
    1. **Select** available clusters per view (largest first) and the clean
       (long enough) subset.
    2. **Fit** every clean cluster once into a shared :class:`FitCache`.
    3. **Match** three times, :math:`(U,V)\to W`, :math:`(V,W)\to U`,
       :math:`(W,U)\to V`, accumulating per-view :class:`AssociationMaps`.
    4. **Rewrite** the clusters of U, V and W in turn.

    Parameters
    ----------
    config : MatchingConfig
        Thresholds and the three input list names.
    geometry : WireGeometry, optional
        Stereo geometry; the default wire angles are used if omitted.

    Notes
    -----
    A view without available clusters is logged and reported in
    :attr:`MatchingResult.missing_views` and the cycle stops before fitting,
    leaving every list and the current list untouched. Invariant violations
    raised by the rewriter propagate to the caller.
    """

    def __init__(self, config: MatchingConfig, geometry: Optional[WireGeometry] = None) -> None:
        self.config = config
        self.geometry = geometry if geometry is not None else WireGeometry()
        self.matcher = PairwiseTrackMatcher(config, self.geometry)
        self.rewriter = ClusterRewriter()

    def select_clusters(self, manager: ClusterManager) -> Tuple[Dict[View, List[Cluster]], Dict[View, List[Cluster]], List[View]]:
        r"""
        Available and clean clusters per view.

        Returns
        -------
        (available, clean, missing_views)
        """
        available: Dict[View, List[Cluster]] = {}
        clean: Dict[View, List[Cluster]] = {}
        missing: List[View] = []
        for view in View:
            name = self.config.list_name(view)
            try:
                available[view] = get_available_clusters(manager, name)
            except NotFoundError as e:
                logger.warning("View %s: %s", view.value, e)
                available[view] = []
                missing.append(view)
            clean[view] = select_clean_clusters(available[view], manager.hit_pool, self.config.cluster_min_length)
            logger.info(
                "View %s: %d available clusters, %d clean",
                view.value, len(available[view]), len(clean[view]),
            )
        return available, clean, missing

    def build_fit_cache(self, clean: Dict[View, List[Cluster]], manager: ClusterManager) -> FitCache:
        fit_cache = FitCache(self.config.sliding_fit_half_window, self.config.layer_pitch)
        for view in View:
            fit_cache.add_clusters(clean.get(view, []), manager.hit_pool)
        logger.info("Built %d sliding fits", len(fit_cache))
        return fit_cache

    def run(self, manager: ClusterManager) -> MatchingResult:
        r"""
        Run one processing cycle over the three input lists of ``manager``.

        Returns
        -------
        MatchingResult

        Raises
        ------
        KeyError
            If an input list name is unknown to the store.
        InvariantViolation
            If a rewrite finds the cluster store inconsistent.
        """
        result = MatchingResult()
        available, clean, result.missing_views = self.select_clusters(manager)
        if result.missing_views:
            logger.warning(
                "No available clusters in view(s) %s; clusters left unchanged",
                ", ".join(v.value for v in result.missing_views),
            )
            result.associations = {view: AssociationMaps(view) for view in View}
            return result

        fit_cache = self.build_fit_cache(clean, manager)
        result.n_fits = len(fit_cache)

        result.associations, result.records = run_matching_passes(
            self.matcher, fit_cache, clean, available, manager.hit_pool
        )

        for view in View:
            result.summaries[view] = self.rewriter.modify_clusters(
                manager, self.config.list_name(view), result.associations[view]
            )
        return result
