from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from xview_reco.errors import ClusterStoreError
from xview_reco.geometry import View
from xview_reco.hit_pool import HitPool

logger = logging.getLogger(__name__)


class ClusterStatus(Enum):
    """Availability of a cluster for further processing."""
    AVAILABLE = "available"
    CONSUMED = "consumed"


@dataclass(slots=True)
class Cluster:
    r"""
    A group of hits in one view believed to come from one trajectory segment.

    Attributes
    ----------
    cluster_id : int
        Stable arena handle; never reused within an event.
    view : View
        View of every member hit.
    hit_ids : set of int
        Member hits. Exclusive: a hit belongs to at most one live cluster.
    status : ClusterStatus
        ``AVAILABLE`` unless a downstream stage consumed the cluster.
    """
    cluster_id: int
    view: View
    hit_ids: Set[int] = field(default_factory=set)
    status: ClusterStatus = ClusterStatus.AVAILABLE

    @property
    def n_hits(self) -> int:
        return len(self.hit_ids)

    @property
    def is_available(self) -> bool:
        return self.status is ClusterStatus.AVAILABLE

    def sorted_hit_ids(self) -> List[int]:
        return sorted(self.hit_ids)


def cluster_positions(cluster: Cluster, hit_pool: HitPool) -> np.ndarray:
    r"""Member positions ``(M, 2)`` in ascending hit-id order."""
    return hit_pool.positions(cluster.sorted_hit_ids())


def get_cluster_span_x(cluster: Cluster, hit_pool: HitPool) -> Tuple[float, float]:
    r"""
    Drift-coordinate extent :math:`(x_{\min}, x_{\max})` of a cluster.

    Raises
    ------
    ClusterStoreError
        If the cluster is empty.
    """
    if not cluster.hit_ids:
        raise ClusterStoreError(f"Cluster {cluster.cluster_id} has no hits.")
    xs = cluster_positions(cluster, hit_pool)[:, 0]
    return float(xs.min()), float(xs.max())


def get_length_squared(cluster: Cluster, hit_pool: HitPool) -> float:
    r"""
    Squared length of a cluster, the squared diagonal of its bounding box:

    .. math::

        L^2 = (x_{\max}-x_{\min})^2 + (z_{\max}-z_{\min})^2 .
    """
    if not cluster.hit_ids:
        return 0.0
    pts = cluster_positions(cluster, hit_pool)
    extent = pts.max(axis=0) - pts.min(axis=0)
    return float(extent @ extent)


def get_length(cluster: Cluster, hit_pool: HitPool) -> float:
    return float(np.sqrt(get_length_squared(cluster, hit_pool)))


def sort_by_n_hits(clusters: Iterable[Cluster]) -> List[Cluster]:
    r"""Descending hit count; ties broken by ascending ``cluster_id``."""
    return sorted(clusters, key=lambda c: (-c.n_hits, c.cluster_id))


class ClusterManager:
    r"""
    In-memory cluster store with named cluster lists.

    Provides the primitives the matching algorithm relies on: list retrieval,
    replacement of the *current* list, temporary lists and saving them under a
    name, plus cluster creation, deletion and single-hit removal. Ownership of
    hits is mirrored into the :class:`~xview_reco.hit_pool.HitPool` so that a hit
    is unavailable exactly while a live cluster holds it.

    Parameters
    ----------
    hit_pool : HitPool
        Arena of the event's hits.

    Attributes
    ----------
    hit_pool : HitPool
        Hit arena shared with every consumer.
    current_list_name : str or None
        Name of the list new clusters are created into.
    """

    def __init__(self, hit_pool: HitPool) -> None:
        self.hit_pool = hit_pool
        self._clusters: Dict[int, Cluster] = {}
        self._lists: Dict[str, List[int]] = {}
        self._list_of: Dict[int, str] = {}
        self._hit_owner: Dict[int, int] = {}
        self._ids = itertools.count(1)
        self._temp_ids = itertools.count(1)
        self.current_list_name: Optional[str] = None

    # ------------------------------------------------------------------
    # Lists
    def list_names(self) -> List[str]:
        return list(self._lists)

    def has_list(self, name: str) -> bool:
        return name in self._lists

    def create_list(self, name: str, groups: Iterable[Iterable[int]] = ()) -> List[Cluster]:
        r"""
        Create a named list, optionally filled with one cluster per hit group.

        Raises
        ------
        ClusterStoreError
            If the name already exists or a group is invalid.
        """
        if name in self._lists:
            raise ClusterStoreError(f"Cluster list '{name}' already exists.")
        self._lists[name] = []
        previous = self.current_list_name
        self.current_list_name = name
        try:
            created = [self.create_cluster(g) for g in groups]
        finally:
            self.current_list_name = previous if previous is not None else name
        return created

    def get_list(self, name: str) -> List[Cluster]:
        r"""
        Clusters of a named list, in insertion order.

        Raises
        ------
        KeyError
            If no list has this name.
        """
        try:
            ids = self._lists[name]
        except KeyError as e:
            raise KeyError(f"Unknown cluster list '{name}'") from e
        return [self._clusters[cid] for cid in ids]

    def replace_current_list(self, name: str) -> None:
        r"""Make ``name`` the current list (``KeyError`` if unknown)."""
        if name not in self._lists:
            raise KeyError(f"Unknown cluster list '{name}'")
        self.current_list_name = name

    def get_current_list(self) -> List[Cluster]:
        if self.current_list_name is None:
            raise ClusterStoreError("No current cluster list.")
        return self.get_list(self.current_list_name)

    def create_temporary_list_and_set_current(self) -> str:
        r"""Create an empty, uniquely-named temporary list and make it current."""
        name = f"__temp_{next(self._temp_ids)}"
        self._lists[name] = []
        self.current_list_name = name
        return name

    def save_list(self, source: str, target: str) -> None:
        r"""
        Move every cluster of ``source`` into ``target`` and drop ``source``.

        ``target`` is created if needed and becomes the current list.

        Raises
        ------
        KeyError
            If ``source`` does not exist.
        ClusterStoreError
            If ``source`` and ``target`` are the same list.
        """
        if source not in self._lists:
            raise KeyError(f"Unknown cluster list '{source}'")
        if source == target:
            raise ClusterStoreError("Cannot save a cluster list onto itself.")
        moved = self._lists.pop(source)
        dest = self._lists.setdefault(target, [])
        for cid in moved:
            dest.append(cid)
            self._list_of[cid] = target
        self.current_list_name = target
        logger.debug("Saved %d clusters from '%s' into '%s'", len(moved), source, target)

    # ------------------------------------------------------------------
    # Clusters
    def get_cluster(self, cluster_id: int) -> Cluster:
        try:
            return self._clusters[int(cluster_id)]
        except KeyError as e:
            raise ClusterStoreError(f"Unknown cluster {cluster_id}") from e

    def owner_of(self, hit_id: int) -> Optional[int]:
        r"""Id of the live cluster holding ``hit_id``, or ``None``."""
        return self._hit_owner.get(int(hit_id))

    def create_cluster(self, hit_ids: Iterable[int]) -> Cluster:
        r"""
        Create a cluster from unowned hits of a single view in the current list.

        Raises
        ------
        ClusterStoreError
            If there is no current list, the group is empty, a hit is unknown or
            already owned, or the hits span several views.
        """
        if self.current_list_name is None:
            raise ClusterStoreError("No current cluster list to create into.")
        ids = sorted({int(h) for h in hit_ids})
        if not ids:
            raise ClusterStoreError("Cannot create a cluster without hits.")
        views = set()
        for h in ids:
            if h not in self.hit_pool:
                raise ClusterStoreError(f"Unknown hit {h}")
            if h in self._hit_owner:
                raise ClusterStoreError(f"Hit {h} already belongs to cluster {self._hit_owner[h]}")
            views.add(self.hit_pool.view_of(h))
        if len(views) != 1:
            raise ClusterStoreError("A cluster must hold hits from exactly one view.")

        cluster = Cluster(cluster_id=next(self._ids), view=views.pop(), hit_ids=set(ids))
        self._clusters[cluster.cluster_id] = cluster
        self._lists[self.current_list_name].append(cluster.cluster_id)
        self._list_of[cluster.cluster_id] = self.current_list_name
        for h in ids:
            self._hit_owner[h] = cluster.cluster_id
        self.hit_pool.assign_hits(ids)
        return cluster

    def delete_cluster(self, cluster_id: int) -> None:
        r"""Delete a cluster and release its hits."""
        cluster = self.get_cluster(cluster_id)
        name = self._list_of.pop(cluster.cluster_id)
        self._lists[name].remove(cluster.cluster_id)
        del self._clusters[cluster.cluster_id]
        for h in cluster.hit_ids:
            self._hit_owner.pop(h, None)
        self.hit_pool.release_hits(cluster.hit_ids)

    def remove_from_cluster(self, cluster_id: int, hit_id: int) -> None:
        r"""
        Remove one hit from a cluster and release it.

        Raises
        ------
        ClusterStoreError
            If the hit is not a member, or removing it would empty the cluster
            (delete the cluster instead).
        """
        cluster = self.get_cluster(cluster_id)
        h = int(hit_id)
        if h not in cluster.hit_ids:
            raise ClusterStoreError(f"Hit {h} is not in cluster {cluster.cluster_id}")
        if cluster.n_hits == 1:
            raise ClusterStoreError(f"Removing hit {h} would empty cluster {cluster.cluster_id}")
        cluster.hit_ids.discard(h)
        self._hit_owner.pop(h, None)
        self.hit_pool.release_hit(h)

    def set_status(self, cluster_id: int, status: ClusterStatus) -> None:
        self.get_cluster(cluster_id).status = status
