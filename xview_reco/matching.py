from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from xview_reco.clusters import Cluster, get_cluster_span_x
from xview_reco.config import MatchingConfig
from xview_reco.errors import InvariantViolation
from xview_reco.fitting import FitCache, SlidingLinearFit
from xview_reco.geometry import View, WireGeometry
from xview_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)


class MatchIdSequence(Iterator[int]):
    r"""
    Issues match-candidate ids ``1, 2, 3, ...`` for one matching pass.

    Ids are only meaningful inside the pass that issued them; they are never
    persisted.
    """

    __slots__ = ("_next", "last")

    def __init__(self, start: int = 1) -> None:
        self._next = int(start)
        self.last: Optional[int] = None

    def __next__(self) -> int:
        self.last = self._next
        self._next += 1
        return self.last


class AssociationMaps:
    r"""
    Bidirectional hit ↔ match-candidate associations for one view.

    ``hit_to_matches[h]`` is the set of match ids claiming hit ``h`` and
    ``match_to_hits[m]`` the set of hits claimed by match ``m``. Both sides are
    written together by :meth:`add`, so every pairing appears in both.

    A hit may be claimed by several match ids; that ambiguity is resolved by
    the cluster rewriter, not here.
    """

    __slots__ = ("view", "hit_to_matches", "match_to_hits")

    def __init__(self, view: Optional[View] = None) -> None:
        self.view = view
        self.hit_to_matches: Dict[int, Set[int]] = {}
        self.match_to_hits: Dict[int, Set[int]] = {}

    def add(self, hit_id: int, match_id: int) -> None:
        self.hit_to_matches.setdefault(int(hit_id), set()).add(int(match_id))
        self.match_to_hits.setdefault(int(match_id), set()).add(int(hit_id))

    def add_many(self, hit_ids: Iterable[int], match_id: int) -> None:
        for h in hit_ids:
            self.add(h, match_id)

    def matches_for_hit(self, hit_id: int) -> Set[int]:
        return set(self.hit_to_matches.get(int(hit_id), ()))

    def hits_for_match(self, match_id: int) -> Set[int]:
        return set(self.match_to_hits.get(int(match_id), ()))

    def is_ambiguous(self, hit_id: int) -> bool:
        return len(self.hit_to_matches.get(int(hit_id), ())) > 1

    def ambiguous_hits(self) -> List[int]:
        return sorted(h for h, ms in self.hit_to_matches.items() if len(ms) > 1)

    def is_empty(self) -> bool:
        return not self.match_to_hits

    def __len__(self) -> int:
        return sum(len(ms) for ms in self.hit_to_matches.values())

    def check_consistency(self) -> None:
        r"""
        Verify that both maps describe the same set of pairings.

        Raises
        ------
        InvariantViolation
            If a pairing is present on one side only.
        """
        forward = {(h, m) for h, ms in self.hit_to_matches.items() for m in ms}
        backward = {(h, m) for m, hs in self.match_to_hits.items() for h in hs}
        if forward != backward:
            raise InvariantViolation("Hit and cluster association maps disagree.")

    def to_frame(self) -> pd.DataFrame:
        r"""Pairings as a ``{'hit_id', 'match_id'}`` frame sorted by both columns."""
        rows = sorted((h, m) for h, ms in self.hit_to_matches.items() for m in ms)
        return pd.DataFrame(
            {
                "hit_id": np.array([r[0] for r in rows], dtype=np.int64),
                "match_id": np.array([r[1] for r in rows], dtype=np.int64),
            }
        )


class PairOutcome(Enum):
    """Result of testing one (cluster, cluster) pair."""
    ACCEPTED = "accepted"
    NO_OVERLAP = "no_overlap"
    NO_PROJECTION = "no_projection"
    BAD_CLUSTER_SHAPE = "bad_cluster_shape"
    TOO_FEW_HITS = "too_few_hits"
    LOW_COVERAGE = "low_coverage"


@dataclass(slots=True)
class PairMatchRecord:
    r"""
    Diagnostic record of one tested pair.

    Attributes
    ----------
    match_id : int
        Id issued by the pass's :class:`MatchIdSequence`.
    cluster_id_a, cluster_id_b : int
        The paired clusters.
    target_view : View
        View in which corroborating hits were searched.
    outcome : PairOutcome
        Accepted, or the first gate that rejected the pair.
    projected_points : ndarray, shape (K, 2)
        Projected trajectory samples in the target view.
    matched_hit_ids : list of int
        Hits that survived every hit-level gate (empty unless they were computed).
    n_matched_points : int
        Projected samples corroborated by a matched hit.
    """
    match_id: int
    cluster_id_a: int
    cluster_id_b: int
    target_view: View
    outcome: PairOutcome
    projected_points: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float64))
    matched_hit_ids: List[int] = field(default_factory=list)
    n_matched_points: int = 0

    @property
    def accepted(self) -> bool:
        return self.outcome is PairOutcome.ACCEPTED


@dataclass(slots=True)
class CandidateHits:
    """Hits of the target view's available clusters, flattened for KD-tree queries."""
    hit_ids: np.ndarray
    positions: np.ndarray
    owners: np.ndarray
    owner_spans: Dict[int, float]


def x_overlap(span_a: Tuple[float, float], span_b: Tuple[float, float]) -> Tuple[float, float]:
    r"""
    Drift-coordinate overlap and joint span of two extents.

    .. math::

        o = \min(x^a_{\max}, x^b_{\max}) - \max(x^a_{\min}, x^b_{\min}),\qquad
        s = \max(x^a_{\max}, x^b_{\max}) - \min(x^a_{\min}, x^b_{\min}).
    """
    (min_a, max_a), (min_b, max_b) = span_a, span_b
    overlap = min(max_a, max_b) - max(min_a, min_b)
    span = max(max_a, max_b) - min(min_a, min_b)
    return overlap, span


def passes_overlap_gate(
    span_a: Tuple[float, float],
    span_b: Tuple[float, float],
    min_overlap: float,
    min_overlap_fraction: float,
) -> bool:
    r"""
    ``False`` when :math:`o < o_{\min}` or :math:`o/s < f_{\min}`; equality passes.
    """
    overlap, span = x_overlap(span_a, span_b)
    if overlap < min_overlap:
        return False
    if span <= 0.0:
        return min_overlap_fraction <= 1.0
    return overlap / span >= min_overlap_fraction


def sampling_positions(x_min: float, x_max: float, n_samples: int) -> np.ndarray:
    r"""
    Mid-points of ``n_samples`` equal sub-intervals of :math:`[x_{\min}, x_{\max}]`:

    .. math:: x_n = x_{\min} + \frac{n+\tfrac12}{N}\,(x_{\max}-x_{\min}).
    """
    alpha = (np.arange(n_samples, dtype=np.float64) + 0.5) / float(n_samples)
    return x_min + alpha * (x_max - x_min)


def _nearest_within(points: np.ndarray, queries: np.ndarray, radius: float) -> np.ndarray:
    r"""
    Boolean mask over ``queries``: ``True`` where some row of ``points`` lies at
    distance **strictly** below ``radius``.
    """
    if points.shape[0] == 0 or queries.shape[0] == 0:
        return np.zeros(queries.shape[0], dtype=bool)
    d, _ = cKDTree(points).query(queries, k=1, distance_upper_bound=radius)
    return d < radius


def evaluate_pair(
    projected: np.ndarray,
    candidates: CandidateHits,
    max_span: float,
    config: MatchingConfig,
) -> Tuple[PairOutcome, List[int], int]:
    r"""
    Run the hit-level gates of one pair against the target-view candidates.

    Gates, in order:

    1. **Harvest** candidate hits at distance :math:`< d_{pt}` of any projected
       point; their clusters are the associated clusters.
    2. **Cluster shape**: reject if an associated cluster's x-span exceeds
       ``max_span``.
    3. **Mutual proximity**: keep associated hits having another associated hit
       at distance :math:`< d_{hit}`.
    4. **Count**: reject if fewer than ``min_matched_hits`` remain.
    5. **Coverage**: reject if the fraction of projected points with a matched
       hit at distance :math:`< d_{pt}` is below ``min_matched_point_fraction``.

    Parameters
    ----------
    projected : ndarray, shape (K, 2)
        Projected trajectory samples (``K >= 1``).
    candidates : CandidateHits
        Flattened target-view hits with their owning cluster ids.
    max_span : float
        :math:`\min(\text{span}_a, \text{span}_b)` of the paired clusters.
    config : MatchingConfig
        Thresholds.

    Returns
    -------
    (PairOutcome, list[int], int)
        Outcome, matched hit ids (ascending) and the number of corroborated
        projected points.
    """
    r_pt = float(config.max_point_displacement)

    associated = _nearest_within(projected, candidates.positions, r_pt)
    assoc_idx = np.flatnonzero(associated)

    for owner in np.unique(candidates.owners[assoc_idx]).tolist():
        if candidates.owner_spans[int(owner)] > max_span:
            return PairOutcome.BAD_CLUSTER_SHAPE, [], 0

    matched_idx = np.empty(0, dtype=np.int64)
    if assoc_idx.size >= 2:
        assoc_pos = candidates.positions[assoc_idx]
        # second neighbour: the nearest *other* associated hit
        d, _ = cKDTree(assoc_pos).query(assoc_pos, k=2, distance_upper_bound=float(config.max_hit_displacement))
        matched_idx = assoc_idx[d[:, 1] < float(config.max_hit_displacement)]

    matched_ids = sorted(int(h) for h in candidates.hit_ids[matched_idx])
    if len(matched_ids) < int(config.min_matched_hits):
        return PairOutcome.TOO_FEW_HITS, matched_ids, 0

    covered = _nearest_within(candidates.positions[matched_idx], projected, r_pt)
    n_matched_points = int(covered.sum())
    if n_matched_points / float(projected.shape[0]) < float(config.min_matched_point_fraction):
        return PairOutcome.LOW_COVERAGE, matched_ids, n_matched_points

    return PairOutcome.ACCEPTED, matched_ids, n_matched_points


class PairwiseTrackMatcher:
    r"""
    Cross-view matcher for one ordered view triple :math:`(A, B) \to C`.

    For every pair of clean clusters from views :math:`A` and :math:`B` with a
    cached fit, the matcher:

    1. applies the drift-coordinate overlap gate,
    2. samples the overlap at ``n_sampling_points`` mid-points, evaluates both
       fits there, merges the two positions into 3D and projects the point into
       :math:`C` (samples where any step yields nothing are dropped),
    3. searches the hits of :math:`C`'s available clusters for corroboration
       and applies the shape / proximity / count / coverage gates
       (:func:`evaluate_pair`),
    4. records every matched hit under the pair's match id.

    Parameters
    ----------
    config : MatchingConfig
        Thresholds and sampling settings.
    geometry : WireGeometry
        Stereo merge and projection.
    """

    def __init__(self, config: MatchingConfig, geometry: WireGeometry) -> None:
        self.config = config
        self.geometry = geometry

    def match(
        self,
        fit_cache: FitCache,
        clusters_a: Sequence[Cluster],
        clusters_b: Sequence[Cluster],
        clusters_c: Sequence[Cluster],
        hit_pool: HitPool,
        associations: AssociationMaps,
    ) -> List[PairMatchRecord]:
        r"""
        Match clean clusters of two views against available clusters of the third.

        Parameters
        ----------
        fit_cache : FitCache
            Fits of the clean clusters (read-only here).
        clusters_a, clusters_b : sequence of Cluster
            Clean clusters of views :math:`A` and :math:`B`.
        clusters_c : sequence of Cluster
            Available clusters of view :math:`C`.
        hit_pool : HitPool
            Hit positions.
        associations : AssociationMaps
            Receives the accepted hit ↔ match-id pairings for view :math:`C`.

        Returns
        -------
        list[PairMatchRecord]
            One record per tested pair, in match-id order. Empty when any input
            is empty or the three inputs do not come from three distinct views.
        """
        if not clusters_a or not clusters_b or not clusters_c:
            return []

        view_a, view_b, view_c = clusters_a[0].view, clusters_b[0].view, clusters_c[0].view
        if view_a is view_b or view_b is view_c or view_c is view_a:
            return []

        candidates = self._flatten_candidates(clusters_c, hit_pool)
        spans: Dict[int, Tuple[float, float]] = {}
        for cluster in (*clusters_a, *clusters_b):
            if cluster.cluster_id in fit_cache and cluster.cluster_id not in spans:
                spans[cluster.cluster_id] = get_cluster_span_x(cluster, hit_pool)

        records: List[PairMatchRecord] = []
        match_ids = MatchIdSequence()

        for cluster_a in clusters_a:
            fit_a = fit_cache.get(cluster_a.cluster_id)
            if fit_a is None:
                continue
            for cluster_b in clusters_b:
                fit_b = fit_cache.get(cluster_b.cluster_id)
                if fit_b is None:
                    continue
                record = self._match_pair(
                    next(match_ids),
                    cluster_a, fit_a, spans[cluster_a.cluster_id],
                    cluster_b, fit_b, spans[cluster_b.cluster_id],
                    view_c, candidates,
                )
                if record.accepted:
                    associations.add_many(record.matched_hit_ids, record.match_id)
                records.append(record)

        n_accepted = sum(1 for r in records if r.accepted)
        logger.info(
            "Matching (%s,%s)->%s: %d pairs tested, %d accepted",
            view_a.value, view_b.value, view_c.value, len(records), n_accepted,
        )
        return records

    def project_samples(
        self,
        fit_a: SlidingLinearFit,
        view_a: View,
        fit_b: SlidingLinearFit,
        view_b: View,
        view_c: View,
        x_min: float,
        x_max: float,
    ) -> np.ndarray:
        r"""
        Project the trajectory implied by two fits into ``view_c``.

        Returns
        -------
        ndarray, shape (K, 2)
            One row per sample where both fit lookups and the merge succeeded
            (``K <= n_sampling_points``).
        """
        projected: List[np.ndarray] = []
        for x in sampling_positions(x_min, x_max, int(self.config.n_sampling_points)).tolist():
            position_a = fit_a.position_at_x(x)
            position_b = fit_b.position_at_x(x)
            if position_a is None or position_b is None:
                continue
            merged = self.geometry.merge_two_positions(view_a, view_b, position_a, position_b)
            if merged is None:
                continue
            projected.append(self.geometry.project_position(merged[0], view_c))
        if not projected:
            return np.empty((0, 2), dtype=np.float64)
        return np.vstack(projected)

    def _match_pair(
        self,
        match_id: int,
        cluster_a: Cluster,
        fit_a: SlidingLinearFit,
        span_a: Tuple[float, float],
        cluster_b: Cluster,
        fit_b: SlidingLinearFit,
        span_b: Tuple[float, float],
        view_c: View,
        candidates: CandidateHits,
    ) -> PairMatchRecord:
        record = PairMatchRecord(
            match_id=match_id,
            cluster_id_a=cluster_a.cluster_id,
            cluster_id_b=cluster_b.cluster_id,
            target_view=view_c,
            outcome=PairOutcome.NO_OVERLAP,
        )

        cfg = self.config
        if not passes_overlap_gate(span_a, span_b, cfg.min_x_overlap, cfg.min_x_overlap_fraction):
            logger.debug("Pair %d (%d,%d): insufficient x overlap", match_id, cluster_a.cluster_id, cluster_b.cluster_id)
            return record

        x_min = max(span_a[0], span_b[0])
        x_max = min(span_a[1], span_b[1])
        projected = self.project_samples(fit_a, cluster_a.view, fit_b, cluster_b.view, view_c, x_min, x_max)
        record.projected_points = projected
        if projected.shape[0] == 0:
            record.outcome = PairOutcome.NO_PROJECTION
            logger.debug("Pair %d: no projected samples", match_id)
            return record

        max_span = min(span_a[1] - span_a[0], span_b[1] - span_b[0])
        outcome, matched, n_points = evaluate_pair(projected, candidates, max_span, cfg)
        record.outcome = outcome
        record.matched_hit_ids = matched
        record.n_matched_points = n_points
        logger.debug(
            "Pair %d (%d,%d): %s, %d matched hits, %d/%d points",
            match_id, cluster_a.cluster_id, cluster_b.cluster_id,
            outcome.value, len(matched), n_points, projected.shape[0],
        )
        return record

    @staticmethod
    def _flatten_candidates(clusters: Sequence[Cluster], hit_pool: HitPool) -> CandidateHits:
        ids: List[int] = []
        owners: List[int] = []
        spans: Dict[int, float] = {}
        for cluster in sorted(clusters, key=lambda c: c.cluster_id):
            members = cluster.sorted_hit_ids()
            if not members:
                continue
            ids.extend(members)
            owners.extend([cluster.cluster_id] * len(members))
            x_min, x_max = get_cluster_span_x(cluster, hit_pool)
            spans[cluster.cluster_id] = x_max - x_min
        return CandidateHits(
            hit_ids=np.asarray(ids, dtype=np.int64),
            positions=hit_pool.positions(ids),
            owners=np.asarray(owners, dtype=np.int64),
            owner_spans=spans,
        )


def run_matching_passes(
    matcher: PairwiseTrackMatcher,
    fit_cache: FitCache,
    clean: Mapping[View, Sequence[Cluster]],
    available: Mapping[View, Sequence[Cluster]],
    hit_pool: HitPool,
) -> Tuple[Dict[View, AssociationMaps], Dict[View, List[PairMatchRecord]]]:
    r"""
    Run the three cyclic passes :math:`(U,V)\to W`, :math:`(V,W)\to U`,
    :math:`(W,U)\to V`, each writing into its target view's maps.

    Returns
    -------
    (dict, dict)
        Per-target-view :class:`AssociationMaps` and pass records.
    """
    associations = {view: AssociationMaps(view) for view in View}
    records: Dict[View, List[PairMatchRecord]] = {}
    for view_a, view_b, view_c in ((View.U, View.V, View.W), (View.V, View.W, View.U), (View.W, View.U, View.V)):
        records[view_c] = matcher.match(
            fit_cache,
            clean.get(view_a, ()),
            clean.get(view_b, ()),
            available.get(view_c, ()),
            hit_pool,
            associations[view_c],
        )
    return associations, records
