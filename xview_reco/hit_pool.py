from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Set, Tuple

import numpy as np
import pandas as pd

from xview_reco.geometry import ALL_VIEWS, View


@dataclass(frozen=True, slots=True)
class Hit:
    r"""
    Read-only snapshot of one hit.

    Attributes
    ----------
    hit_id : int
        Stable arena handle.
    view : View
        View the hit was measured in.
    x : float
        Drift coordinate.
    z : float
        Wire coordinate of ``view``.
    available : bool
        ``False`` while the hit is owned by a cluster.
    """
    hit_id: int
    view: View
    x: float
    z: float
    available: bool

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.z], dtype=np.float64)


class HitPool:
    r"""
    Arena of the event's hits with ownership bookkeeping.

    Hits are addressed by their integer ``hit_id``; positions are immutable and
    held in one contiguous ``(N, 2)`` ``float64`` array ``(x, z)``. Ownership by
    clusters is tracked with a set of **assigned** hit ids, the same model as a
    reservation pool: a hit is *available* exactly when it is not assigned.

    Design goals
    ------------
    - **Zero mutation of the input DataFrame**.
    - Contiguous NumPy arrays (``float64`` coords, ``int64`` ids) for vectorized
      position lookups.
    - Set-based assignment with bulk ops for :math:`\mathcal{O}(H)` adds/removes.

    Attributes
    ----------
    hits : :class:`pandas.DataFrame`
        Input table with at least ``hit_id, view, x, z`` (``view`` holds ``'U' | 'V' | 'W'``).
    _assigned_hits : set of int
        Hit ids currently owned by a cluster.
    """

    __slots__ = ("hits", "_ids", "_positions", "_views", "_row", "_assigned_hits", "_by_view")

    def __init__(self, hits: pd.DataFrame) -> None:
        try:
            ids = hits["hit_id"].to_numpy(dtype=np.int64, copy=True)
            x = hits["x"].to_numpy(dtype=np.float64, copy=False)
            z = hits["z"].to_numpy(dtype=np.float64, copy=False)
            views = [View.parse(v) for v in hits["view"].tolist()]
        except KeyError as e:
            raise KeyError(f"Missing required column: {e.args[0]}") from e

        if not (ids.size == x.size == z.size == len(views)):
            raise ValueError("Mismatched column lengths in hits DataFrame.")

        self.hits = hits
        self._ids = ids
        self._positions = np.ascontiguousarray(np.column_stack((x, z)), dtype=np.float64)
        self._views: List[View] = views
        self._row: Dict[int, int] = {}
        for row, hid in enumerate(ids.tolist()):
            if hid in self._row:
                raise ValueError(f"Duplicate hit_id {hid} in hits DataFrame.")
            self._row[hid] = row
        self._assigned_hits: Set[int] = set()
        self._by_view: Dict[View, np.ndarray] = {
            view: ids[np.fromiter((v is view for v in views), dtype=bool, count=len(views))]
            for view in ALL_VIEWS
        }

    def __len__(self) -> int:
        return int(self._ids.size)

    def __contains__(self, hit_id: object) -> bool:
        return hit_id in self._row

    def _row_of(self, hit_id: int) -> int:
        try:
            return self._row[int(hit_id)]
        except KeyError as e:
            raise KeyError(f"Unknown hit_id {hit_id}") from e

    def get_hit(self, hit_id: int) -> Hit:
        r"""Return a :class:`Hit` snapshot for ``hit_id``."""
        row = self._row_of(hit_id)
        x, z = self._positions[row]
        return Hit(
            hit_id=int(hit_id),
            view=self._views[row],
            x=float(x),
            z=float(z),
            available=int(hit_id) not in self._assigned_hits,
        )

    def position(self, hit_id: int) -> np.ndarray:
        r"""Position ``(x, z)`` of one hit (a copy)."""
        return self._positions[self._row_of(hit_id)].copy()

    def positions(self, hit_ids: Iterable[int]) -> np.ndarray:
        r"""
        Positions of many hits.

        Returns
        -------
        ndarray, shape (M, 2)
            Rows aligned with ``hit_ids``.
        """
        rows = np.fromiter((self._row_of(h) for h in hit_ids), dtype=np.int64)
        if rows.size == 0:
            return np.empty((0, 2), dtype=np.float64)
        return self._positions[rows]

    def view_of(self, hit_id: int) -> View:
        return self._views[self._row_of(hit_id)]

    def hit_ids_in_view(self, view: View) -> np.ndarray:
        r"""All hit ids of ``view`` in input order."""
        return self._by_view[view]

    def assign_hits(self, hit_ids: Iterable[int]) -> int:
        r"""
        Mark many hits as owned.

        Returns
        -------
        int
            Number of **newly** assigned hits.
        """
        before = len(self._assigned_hits)
        self._assigned_hits.update(int(h) for h in hit_ids)
        return len(self._assigned_hits) - before

    def release_hit(self, hit_id: int) -> bool:
        r"""
        Release ownership of a hit.

        Returns
        -------
        bool
            ``True`` if the hit was previously assigned and is now released.
        """
        try:
            self._assigned_hits.remove(int(hit_id))
            return True
        except KeyError:
            return False

    def release_hits(self, hit_ids: Iterable[int]) -> int:
        r"""Release many hits; returns the count actually released."""
        return sum(1 for h in hit_ids if self.release_hit(h))

    def is_hit_available(self, hit_id: int) -> bool:
        return int(hit_id) not in self._assigned_hits

    def get_available_hit_count(self, view: View | None = None) -> int:
        r"""Number of unowned hits, in the whole pool or in one view."""
        if view is None:
            return int(len(self) - len(self._assigned_hits))
        ids = self._by_view[view]
        return int(sum(1 for h in ids.tolist() if h not in self._assigned_hits))

    def get_assignment_ratio(self) -> float:
        r"""
        Fraction of owned hits in :math:`[0,1]` (``0.0`` for an empty pool).
        """
        total = len(self)
        return (len(self._assigned_hits) / total) if total else 0.0

    def view_statistics(self) -> Dict[View, Dict[str, int]]:
        r"""
        Per-view counts ``{'total_hits', 'assigned_hits', 'available_hits'}``.
        """
        stats: Dict[View, Dict[str, int]] = {}
        for view, ids in self._by_view.items():
            total = int(ids.size)
            assigned = int(sum(1 for h in ids.tolist() if h in self._assigned_hits))
            stats[view] = {
                "total_hits": total,
                "assigned_hits": assigned,
                "available_hits": total - assigned,
            }
        return stats

    def bounds(self, view: View) -> Tuple[float, float, float, float]:
        r"""``(x_min, x_max, z_min, z_max)`` of a view's hits (zeros if empty)."""
        ids = self._by_view[view]
        if ids.size == 0:
            return 0.0, 0.0, 0.0, 0.0
        pts = self.positions(ids.tolist())
        return (
            float(pts[:, 0].min()),
            float(pts[:, 0].max()),
            float(pts[:, 1].min()),
            float(pts[:, 1].max()),
        )
