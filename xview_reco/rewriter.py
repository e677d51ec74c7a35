from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from xview_reco.clusters import ClusterManager
from xview_reco.errors import InvariantViolation
from xview_reco.geometry import View
from xview_reco.matching import AssociationMaps

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RewriteSummary:
    r"""
    What one view's rewrite changed.

    Attributes
    ----------
    list_name : str
        The rewritten cluster list.
    view : View or None
        View of the associations consumed.
    n_hits_moved : int
        Hits migrated into new clusters.
    n_clusters_deleted : int
        Source clusters emptied and deleted.
    n_clusters_trimmed : int
        Source clusters that lost some, but not all, of their hits.
    n_clusters_created : int
        New clusters, one per match id with migrated hits.
    n_ambiguous_hits : int
        Claimed hits left in place because several matches claim them.
    """
    list_name: str
    view: Optional[View] = None
    n_hits_moved: int = 0
    n_clusters_deleted: int = 0
    n_clusters_trimmed: int = 0
    n_clusters_created: int = 0
    n_ambiguous_hits: int = 0

    @property
    def changed(self) -> bool:
        return self.n_hits_moved > 0


class ClusterRewriter:
    r"""
    Turn one view's associations into cluster surgery.

    Pipeline
    --------
    1. Make the view's list current and snapshot its available clusters into
       ``hit -> {clusters}`` and ``cluster -> {hits}`` maps.
    2. For every match id (ascending) and claimed hit (ascending): a hit claimed
       by several match ids is **ambiguous** and left where it is; any other hit
       must belong to exactly one snapshot cluster and is scheduled for removal
       from it and insertion into the match's new cluster.
    3. Nothing scheduled: the view is left unchanged.
    4. Scheduled source clusters are deleted when emptied, else trimmed of
       exactly the scheduled hits.
    5. One new cluster per match id is created in a temporary list, which is then
       saved into the view's list.

    Every hit therefore stays in exactly one live cluster throughout.
    """

    def modify_clusters(
        self,
        manager: ClusterManager,
        list_name: str,
        associations: AssociationMaps,
    ) -> RewriteSummary:
        r"""
        Apply ``associations`` to the clusters of ``list_name``.

        Returns
        -------
        RewriteSummary

        Raises
        ------
        InvariantViolation
            If a scheduled hit maps to zero or several snapshot clusters, a
            source cluster is missing from the snapshot, or a destination group
            is empty.
        KeyError, ClusterStoreError
            Propagated unchanged from the cluster store.
        """
        summary = RewriteSummary(list_name=list_name, view=associations.view)

        manager.replace_current_list(list_name)
        hits_to_clusters: Dict[int, Set[int]] = {}
        clusters_to_hits: Dict[int, Set[int]] = {}
        for cluster in manager.get_current_list():
            if not cluster.is_available:
                continue
            for h in cluster.hit_ids:
                hits_to_clusters.setdefault(h, set()).add(cluster.cluster_id)
            clusters_to_hits[cluster.cluster_id] = set(cluster.hit_ids)

        clusters_to_modify: Dict[int, Set[int]] = {}
        clusters_to_create: Dict[int, Set[int]] = {}
        ambiguous: Set[int] = set()

        for match_id in sorted(associations.match_to_hits):
            for hit_id in sorted(associations.match_to_hits[match_id]):
                if associations.is_ambiguous(hit_id):
                    ambiguous.add(hit_id)
                    continue
                owners = hits_to_clusters.get(hit_id, set())
                if len(owners) != 1:
                    raise InvariantViolation(
                        f"Hit {hit_id} belongs to {len(owners)} clusters of '{list_name}' (expected 1)"
                    )
                (owner,) = owners
                clusters_to_modify.setdefault(owner, set()).add(hit_id)
                clusters_to_create.setdefault(match_id, set()).add(hit_id)

        summary.n_ambiguous_hits = len(ambiguous)
        if not clusters_to_create:
            logger.info("No cluster changes for '%s' (%d ambiguous hits)", list_name, len(ambiguous))
            return summary

        for cluster_id in sorted(clusters_to_modify):
            to_remove = clusters_to_modify[cluster_id]
            start = clusters_to_hits.get(cluster_id)
            if start is None:
                raise InvariantViolation(f"Cluster {cluster_id} missing from the '{list_name}' snapshot")
            if not (start - to_remove):
                manager.delete_cluster(cluster_id)
                summary.n_clusters_deleted += 1
            else:
                for hit_id in sorted(to_remove):
                    manager.remove_from_cluster(cluster_id, hit_id)
                summary.n_clusters_trimmed += 1

        temp_name = manager.create_temporary_list_and_set_current()
        created: List[int] = []
        for match_id in sorted(clusters_to_create):
            hit_ids = clusters_to_create[match_id]
            if not hit_ids:
                raise InvariantViolation(f"Empty destination group for match {match_id}")
            created.append(manager.create_cluster(sorted(hit_ids)).cluster_id)
            summary.n_hits_moved += len(hit_ids)
        manager.save_list(temp_name, list_name)
        summary.n_clusters_created = len(created)

        logger.info(
            "Rewrote '%s': moved %d hits, deleted %d, trimmed %d, created %d clusters, %d ambiguous hits",
            list_name, summary.n_hits_moved, summary.n_clusters_deleted,
            summary.n_clusters_trimmed, summary.n_clusters_created, summary.n_ambiguous_hits,
        )
        return summary
