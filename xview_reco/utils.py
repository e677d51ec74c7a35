from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from xview_reco.geometry import ALL_VIEWS, View, WireGeometry


def simulate_track_hits(
    geometry: WireGeometry,
    start: Sequence[float],
    end: Sequence[float],
    spacing: float = 1.0,
    *,
    first_hit_id: int = 0,
    cluster_id: int = 0,
    particle_id: Optional[int] = None,
    views: Iterable[View] = ALL_VIEWS,
) -> pd.DataFrame:
    r"""
    Hits left by a straight 3D segment in each requested view.

    The segment runs from ``start = (x_0, y_0, z_0)`` to ``end = (x_1, y_1, z_1)``.
    Hits are placed at drift coordinates :math:`x_k = x_0 + k\,\Delta` for
    :math:`k = 0, \dots, \lfloor (x_1 - x_0)/\Delta \rfloor`, and each view
    records

    .. math::

        (x_k,\; p_\theta(y(x_k), z(x_k))),\qquad
        p_\theta(y,z) = z\cos\theta - y\sin\theta.

    Parameters
    ----------
    geometry : WireGeometry
        Wire angles of the three views.
    start, end : sequence of float
        3D end points with ``end[0] > start[0]``.
    spacing : float, optional
        Drift-coordinate step :math:`\Delta` (default ``1.0``).
    first_hit_id : int, optional
        Id of the first generated hit; ids increase by one per hit, view after
        view.
    cluster_id : int, optional
        Cluster label written in every view.
    particle_id : int, optional
        If given, written to a ``particle_id`` truth column.
    views : iterable of View, optional
        Views to generate (all three by default).

    Returns
    -------
    pandas.DataFrame
        Columns ``hit_id, view, x, z, cluster_id`` (plus ``particle_id``).

    Raises
    ------
    ValueError
        If ``spacing <= 0`` or the segment does not advance in drift coordinate.

    Examples
    --------
    >>> df = simulate_track_hits(WireGeometry(), (0., 0., 10.), (15., 0., 10.))
    >>> len(df)
    48
    """
    x0, y0, z0 = (float(c) for c in start[:3])
    x1, y1, z1 = (float(c) for c in end[:3])
    if spacing <= 0.0:
        raise ValueError("spacing must be > 0.")
    if x1 <= x0:
        raise ValueError("end must lie at larger drift coordinate than start.")

    n = int(np.floor((x1 - x0) / spacing + 1e-9)) + 1
    xs = x0 + spacing * np.arange(n, dtype=np.float64)
    t = (xs - x0) / (x1 - x0)
    ys = y0 + t * (y1 - y0)
    zs = z0 + t * (z1 - z0)

    frames = []
    next_id = int(first_hit_id)
    for view in views:
        theta = geometry.wire_angle(view)
        frame = pd.DataFrame(
            {
                "hit_id": np.arange(next_id, next_id + n, dtype=np.int64),
                "view": view.value,
                "x": xs,
                "z": zs * np.cos(theta) - ys * np.sin(theta),
                "cluster_id": np.full(n, int(cluster_id), dtype=np.int64),
            }
        )
        if particle_id is not None:
            frame["particle_id"] = np.full(n, int(particle_id), dtype=np.int64)
        frames.append(frame)
        next_id += n
    return pd.concat(frames, ignore_index=True)


def split_cluster(
    hits: pd.DataFrame,
    view: View | str,
    cluster_id: int,
    x_cut: float,
    new_cluster_id: int,
) -> pd.DataFrame:
    r"""
    Break one cluster in two at drift coordinate ``x_cut``.

    Hits of ``(view, cluster_id)`` with :math:`x \ge x_{cut}` are relabelled
    ``new_cluster_id``; everything else is copied unchanged.

    Raises
    ------
    KeyError
        If required columns are missing.
    ValueError
        If ``new_cluster_id`` is already used in ``view``.
    """
    if not {"view", "x", "cluster_id"} <= set(hits.columns):
        raise KeyError("hits must contain 'view', 'x' and 'cluster_id' columns.")
    label = View.parse(view).value
    in_view = hits["view"].astype(str).str.upper() == label
    if bool((in_view & (hits["cluster_id"] == new_cluster_id)).any()):
        raise ValueError(f"cluster_id {new_cluster_id} already used in view {label}.")

    out = hits.copy()
    mask = in_view & (hits["cluster_id"] == cluster_id) & (hits["x"] >= x_cut)
    out.loc[mask, "cluster_id"] = int(new_cluster_id)
    return out


def jitter_hits(
    hits: pd.DataFrame,
    sigma: float = 0.1,
    *,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    r"""
    Add i.i.d. Gaussian noise :math:`\mathcal{N}(0,\sigma^2)` to the wire
    coordinate ``z`` of every hit.

    If ``sigma <= 0`` a plain copy is returned.

    Raises
    ------
    KeyError
        If the ``z`` column is missing.
    """
    if "z" not in hits.columns:
        raise KeyError("hits must contain a 'z' column.")
    out = hits.copy()
    if sigma <= 0.0 or out.empty:
        return out
    rng = np.random.default_rng() if rng is None else rng
    out["z"] = out["z"].to_numpy(dtype=np.float64) + rng.normal(0.0, float(sigma), size=len(out))
    return out


def unclustered_noise(
    n_hits: int,
    view: View | str,
    x_range: Sequence[float],
    z_range: Sequence[float],
    *,
    first_hit_id: int,
    rng: Optional[np.random.Generator] = None,
) -> pd.DataFrame:
    r"""
    Uniformly scattered hits of one view with ``cluster_id = -1``.

    Parameters
    ----------
    n_hits : int
        Number of hits (``>= 0``).
    view : View or str
        View of the hits.
    x_range, z_range : sequence of float
        ``(low, high)`` bounds of the uniform draws.
    first_hit_id : int
        Id of the first hit.
    rng : numpy.random.Generator, optional
        Random generator; a default generator is used if omitted.
    """
    if n_hits < 0:
        raise ValueError("n_hits must be >= 0.")
    rng = np.random.default_rng() if rng is None else rng
    return pd.DataFrame(
        {
            "hit_id": np.arange(first_hit_id, first_hit_id + n_hits, dtype=np.int64),
            "view": View.parse(view).value,
            "x": rng.uniform(float(x_range[0]), float(x_range[1]), size=n_hits),
            "z": rng.uniform(float(z_range[0]), float(z_range[1]), size=n_hits),
            "cluster_id": np.full(n_hits, -1, dtype=np.int64),
        }
    )
