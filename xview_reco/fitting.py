from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, Mapping, Optional

import numpy as np

from xview_reco.clusters import Cluster, cluster_positions
from xview_reco.errors import InvariantViolation
from xview_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)


class SlidingLinearFit:
    r"""
    Sliding-window linear fit of a 2D cluster, queryable by drift coordinate.

    The hits :math:`q_j=(x_j,z_j)` are expressed in a local frame along the
    principal axis :math:`\hat a` (first right-singular vector of the centred
    positions, oriented with :math:`\hat a_x \ge 0`) and its normal
    :math:`\hat n`:

    .. math::

        l_j = (q_j-\bar q)\cdot\hat a,\qquad t_j = (q_j-\bar q)\cdot\hat n .

    Hits are binned into layers :math:`k_j=\lfloor l_j/\Delta\rfloor` of pitch
    :math:`\Delta`. For every layer :math:`k` between the first and last occupied
    one, a least-squares line :math:`t = \alpha_k + \beta_k l` is fitted to the
    hits of layers :math:`[k-h, k+h]` (half window :math:`h`) and evaluated at
    the layer centre :math:`l_k=(k+\tfrac12)\Delta`:

    .. math::

        \beta_k = \frac{n S_{lt} - S_l S_t}{n S_{ll} - S_l^2},\qquad
        \alpha_k = \frac{S_t - \beta_k S_l}{n}.

    Window sums are obtained from per-layer :func:`numpy.bincount` totals and
    prefix sums, so construction is :math:`\mathcal{O}(N + K)`.

    Parameters
    ----------
    positions : ndarray, shape (N, 2)
        Hit positions ``(x, z)``.
    half_window : int
        Half window :math:`h` in layers.
    layer_pitch : float, optional
        Layer pitch :math:`\Delta` along the principal axis (default ``1.0``).
    cluster_id : int, optional
        Id of the cluster the fit was built from.

    Raises
    ------
    ValueError
        If fewer than two layers are occupied, or no layer yields a fit.
    """

    __slots__ = ("cluster_id", "half_window", "layer_pitch", "origin", "axis", "normal", "_layer_positions")

    def __init__(
        self,
        positions: np.ndarray,
        half_window: int,
        layer_pitch: float = 1.0,
        cluster_id: Optional[int] = None,
    ) -> None:
        pts = np.asarray(positions, dtype=np.float64)
        if pts.ndim != 2 or pts.shape[1] != 2:
            raise ValueError("positions must have shape (N, 2).")
        if half_window < 0:
            raise ValueError("half_window must be >= 0.")
        if layer_pitch <= 0.0:
            raise ValueError("layer_pitch must be > 0.")
        if pts.shape[0] < 2:
            raise ValueError("Need at least two hits for a sliding fit.")

        self.cluster_id = cluster_id
        self.half_window = int(half_window)
        self.layer_pitch = float(layer_pitch)

        self.origin = pts.mean(axis=0)
        centred = pts - self.origin
        _, _, vt = np.linalg.svd(centred, full_matrices=False)
        axis = vt[0]
        if axis[0] < -1e-12 or (abs(axis[0]) <= 1e-12 and axis[1] < 0.0):
            axis = -axis
        self.axis = axis
        self.normal = np.array([-axis[1], axis[0]], dtype=np.float64)

        l = centred @ self.axis
        t = centred @ self.normal
        layers = np.floor(l / self.layer_pitch).astype(np.int64)
        k_min, k_max = int(layers.min()), int(layers.max())
        if k_min == k_max:
            raise ValueError("Need at least two occupied layers for a sliding fit.")

        n_layers = k_max - k_min + 1
        offset = layers - k_min

        def _prefix(weights: Optional[np.ndarray]) -> np.ndarray:
            per_layer = np.bincount(offset, weights=weights, minlength=n_layers).astype(np.float64)
            return np.concatenate(([0.0], np.cumsum(per_layer)))

        c_n, c_l, c_t = _prefix(None), _prefix(l), _prefix(t)
        c_ll, c_lt = _prefix(l * l), _prefix(l * t)

        idx = np.arange(n_layers)
        lo = np.maximum(idx - self.half_window, 0)
        hi = np.minimum(idx + self.half_window, n_layers - 1) + 1
        n = c_n[hi] - c_n[lo]
        s_l = c_l[hi] - c_l[lo]
        s_t = c_t[hi] - c_t[lo]
        s_ll = c_ll[hi] - c_ll[lo]
        s_lt = c_lt[hi] - c_lt[lo]

        denom = n * s_ll - s_l * s_l
        valid = (n >= 2.0) & (denom > 1e-12 * np.maximum(1.0, n * s_ll))
        if not valid.any():
            raise ValueError("No layer has enough spread for a linear fit.")

        with np.errstate(divide="ignore", invalid="ignore"):
            slope = np.where(valid, (n * s_lt - s_l * s_t) / denom, 0.0)
            intercept = np.where(valid, (s_t - slope * s_l) / np.maximum(n, 1.0), 0.0)

        l_centre = (k_min + idx[valid] + 0.5) * self.layer_pitch
        t_centre = intercept[valid] + slope[valid] * l_centre
        self._layer_positions = (
            self.origin[None, :]
            + l_centre[:, None] * self.axis[None, :]
            + t_centre[:, None] * self.normal[None, :]
        )

    @property
    def layer_positions(self) -> np.ndarray:
        r"""Fitted positions ``(K, 2)`` at successive layer centres (read-only copy)."""
        return self._layer_positions.copy()

    @property
    def min_x(self) -> float:
        return float(self._layer_positions[:, 0].min())

    @property
    def max_x(self) -> float:
        return float(self._layer_positions[:, 0].max())

    def position_at_x(self, x: float) -> Optional[np.ndarray]:
        r"""
        Fitted position at drift coordinate ``x``.

        The first pair of consecutive fitted layer positions whose
        :math:`x` values bracket ``x`` is interpolated linearly.

        Returns
        -------
        ndarray, shape (2,) or None
            ``(x, z)`` on the fitted trajectory, or ``None`` when ``x`` is not
            covered by the fit.
        """
        pos = self._layer_positions
        if pos.shape[0] == 1:
            return pos[0].copy() if float(x) == float(pos[0, 0]) else None

        x0 = pos[:-1, 0]
        x1 = pos[1:, 0]
        inside = (np.minimum(x0, x1) <= x) & (x <= np.maximum(x0, x1))
        hits = np.flatnonzero(inside)
        if hits.size == 0:
            return None
        i = int(hits[0])
        dx = x1[i] - x0[i]
        if dx == 0.0:
            return pos[i].copy()
        alpha = (x - x0[i]) / dx
        return pos[i] + alpha * (pos[i + 1] - pos[i])


class FitCache(Mapping):
    r"""
    One :class:`SlidingLinearFit` per cluster id, built once per processing cycle.

    The cache is filled before any matching pass and only read afterwards.
    Clusters whose fit cannot be built (too few layers) are left out, so
    lookups for them miss and the matcher skips the pairs involving them.

    Parameters
    ----------
    half_window : int
        Half window of every fit (``slidingFitHalfWindow``).
    layer_pitch : float, optional
        Layer pitch of every fit.
    """

    __slots__ = ("half_window", "layer_pitch", "_fits")

    def __init__(self, half_window: int, layer_pitch: float = 1.0) -> None:
        self.half_window = int(half_window)
        self.layer_pitch = float(layer_pitch)
        self._fits: Dict[int, SlidingLinearFit] = {}

    def __getitem__(self, cluster_id: int) -> SlidingLinearFit:
        return self._fits[cluster_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._fits)

    def __len__(self) -> int:
        return len(self._fits)

    def __contains__(self, cluster_id: object) -> bool:  # type: ignore[override]
        return cluster_id in self._fits

    def insert(self, cluster_id: int, fit: SlidingLinearFit) -> None:
        r"""
        Store a fit.

        Raises
        ------
        InvariantViolation
            If a fit for ``cluster_id`` already exists.
        """
        if cluster_id in self._fits:
            raise InvariantViolation(f"Duplicate fit insertion for cluster {cluster_id}")
        self._fits[cluster_id] = fit

    def add_clusters(self, clusters: Iterable[Cluster], hit_pool: HitPool) -> int:
        r"""
        Ensure every cluster has a fit; existing fits are never recomputed.

        Returns
        -------
        int
            Number of fits added by this call.
        """
        added = 0
        for cluster in clusters:
            if cluster.cluster_id in self._fits:
                continue
            try:
                fit = SlidingLinearFit(
                    cluster_positions(cluster, hit_pool),
                    self.half_window,
                    layer_pitch=self.layer_pitch,
                    cluster_id=cluster.cluster_id,
                )
            except ValueError as e:
                logger.debug("No sliding fit for cluster %d: %s", cluster.cluster_id, e)
                continue
            self.insert(cluster.cluster_id, fit)
            added += 1
        return added
