import logging
from pathlib import Path
from typing import Iterable, Mapping, Optional

import numpy as np
import matplotlib.pyplot as plt
from matplotlib import colormaps

from xview_reco.clusters import ClusterManager, cluster_positions
from xview_reco.geometry import View
from xview_reco.hit_pool import HitPool
from xview_reco.matching import PairMatchRecord

logger = logging.getLogger(__name__)


def _show_and_close(fig, *, do_show: bool = True, save_path: Optional[Path] = None) -> None:
    r"""
    Optionally save and show a Matplotlib figure, then always close it.

    Closing every figure keeps batch runs from accumulating open figures; in
    headless mode ``plt.show()`` may be patched to a no-op.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
        Figure to display and close.
    do_show : bool, optional
        If ``True`` (default) call ``plt.show()`` before closing.
    save_path : pathlib.Path, optional
        If given, the figure is written there first.
    """
    try:
        fig.tight_layout()
    except ValueError:
        pass
    if save_path is not None:
        fig.savefig(save_path)
        logger.info("Saved figure to %s", save_path)
    if do_show:
        plt.show()
    plt.close(fig)


def _draw_view_clusters(ax, manager: ClusterManager, list_name: str, view: View) -> None:
    hit_pool = manager.hit_pool
    clusters = sorted(manager.get_list(list_name), key=lambda c: c.cluster_id)

    clustered = {h for c in clusters for h in c.hit_ids}
    loose = [h for h in hit_pool.hit_ids_in_view(view).tolist() if h not in clustered]
    if loose:
        pts = hit_pool.positions(loose)
        ax.scatter(pts[:, 0], pts[:, 1], s=6, c="lightgrey", label="unclustered")

    cmap = colormaps["tab20"]
    for i, cluster in enumerate(clusters):
        pts = cluster_positions(cluster, hit_pool)
        marker = "o" if cluster.is_available else "x"
        ax.scatter(pts[:, 0], pts[:, 1], s=10, color=cmap(i % cmap.N), marker=marker)

    x_min, x_max, z_min, z_max = hit_pool.bounds(view)
    if x_max > x_min and z_max > z_min:
        pad_x = 0.05 * (x_max - x_min)
        pad_z = 0.05 * (z_max - z_min)
        ax.set_xlim(x_min - pad_x, x_max + pad_x)
        ax.set_ylim(z_min - pad_z, z_max + pad_z)
    ax.set_xlabel("x (drift)")
    ax.set_ylabel(f"wire coordinate {view.value}")
    ax.set_title(f"{list_name}: {len(clusters)} clusters")
    ax.grid(True, alpha=0.3)


def plot_view_clusters(
    manager: ClusterManager,
    list_names: Mapping[View, str],
    *,
    title: Optional[str] = None,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> None:
    r"""
    Event display of the three views side by side, one colour per cluster.

    Available clusters are drawn with dots, consumed ones with crosses, and hits
    outside any cluster of the list in light grey.

    Parameters
    ----------
    manager : ClusterManager
        Store holding the lists.
    list_names : mapping View -> str
        List drawn for each view; views missing from the mapping are skipped.
    title : str, optional
        Figure title.
    show : bool, optional
        Call ``plt.show()`` (default ``True``).
    save_path : pathlib.Path, optional
        Also write the figure to this path.
    """
    views = [v for v in View if v in list_names]
    if not views:
        return
    fig, axes = plt.subplots(1, len(views), figsize=(6 * len(views), 5), squeeze=False)
    for ax, view in zip(axes[0], views):
        _draw_view_clusters(ax, manager, list_names[view], view)
    if title:
        fig.suptitle(title)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_pair_match(
    record: PairMatchRecord,
    hit_pool: HitPool,
    *,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> None:
    r"""
    Projected trajectory of one tested pair over the target view's hits.

    Draws every target-view hit in grey, the projected samples as a line and
    the matched hits in red.
    """
    view = record.target_view
    fig, ax = plt.subplots(figsize=(8, 5))

    ids = hit_pool.hit_ids_in_view(view).tolist()
    if ids:
        pts = hit_pool.positions(ids)
        ax.scatter(pts[:, 0], pts[:, 1], s=6, c="lightgrey", label=f"hits {view.value}")

    proj = np.asarray(record.projected_points, dtype=np.float64)
    if proj.shape[0]:
        ax.plot(proj[:, 0], proj[:, 1], "b-", lw=1.2, label="projection")

    if record.matched_hit_ids:
        matched = hit_pool.positions(record.matched_hit_ids)
        ax.scatter(matched[:, 0], matched[:, 1], s=18, c="red", label="matched")

    ax.set_xlabel("x (drift)")
    ax.set_ylabel(f"wire coordinate {view.value}")
    ax.set_title(
        f"match {record.match_id}: clusters ({record.cluster_id_a}, {record.cluster_id_b}) "
        f"-> {view.value} [{record.outcome.value}]"
    )
    ax.legend(loc="best")
    ax.grid(True, alpha=0.3)
    _show_and_close(fig, do_show=show, save_path=save_path)


def plot_accepted_matches(
    records: Iterable[PairMatchRecord],
    hit_pool: HitPool,
    *,
    max_plots: int = 3,
    show: bool = True,
) -> int:
    r"""
    Draw up to ``max_plots`` accepted records with :func:`plot_pair_match`.

    Returns
    -------
    int
        Number of figures drawn.
    """
    drawn = 0
    for record in records:
        if drawn >= max_plots:
            break
        if not record.accepted:
            continue
        plot_pair_match(record, hit_pool, show=show)
        drawn += 1
    return drawn
