__all__ = [
    "View", "WireGeometry", "third_view",
    "Hit", "HitPool",
    "Cluster", "ClusterStatus", "ClusterManager",
    "get_available_clusters", "select_clean_clusters",
    "SlidingLinearFit", "FitCache",
    "AssociationMaps", "PairOutcome", "PairMatchRecord",
    "PairwiseTrackMatcher", "run_matching_passes",
    "ClusterRewriter", "RewriteSummary",
    "CrossViewTrackMatching", "MatchingResult",
    "MatchingConfig", "load_config",
    "XViewError", "NotFoundError", "InvariantViolation", "ClusterStoreError",
    "load_event", "event_from_frame", "clusters_to_frame",
    "cluster_statistics", "association_statistics", "check_exclusive_membership",
    "simulate_track_hits", "split_cluster", "jitter_hits",
]

# Geometry & hits
from .geometry import View, WireGeometry, third_view
from .hit_pool import Hit, HitPool

# Cluster store
from .clusters import Cluster, ClusterStatus, ClusterManager

# Errors
from .errors import XViewError, NotFoundError, InvariantViolation, ClusterStoreError

# Config
from .config import MatchingConfig, load_config

# Selection, fitting, matching, rewriting
from .selection import get_available_clusters, select_clean_clusters
from .fitting import SlidingLinearFit, FitCache
from .matching import AssociationMaps, PairOutcome, PairMatchRecord, PairwiseTrackMatcher, run_matching_passes
from .rewriter import ClusterRewriter, RewriteSummary
from .algorithm import CrossViewTrackMatching, MatchingResult

# Data & utilities
from .data import load_event, event_from_frame, clusters_to_frame
from .utils import simulate_track_hits, split_cluster, jitter_hits

# Metrics
from .metrics import cluster_statistics, association_statistics, check_exclusive_membership
