from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping

import orjson

from xview_reco.geometry import View

_CAMEL_TO_FIELD: Dict[str, str] = {
    "inputClusterListNameU": "input_cluster_list_name_u",
    "inputClusterListNameV": "input_cluster_list_name_v",
    "inputClusterListNameW": "input_cluster_list_name_w",
    "clusterMinLength": "cluster_min_length",
    "slidingFitHalfWindow": "sliding_fit_half_window",
    "layerPitch": "layer_pitch",
    "minXOverlap": "min_x_overlap",
    "minXOverlapFraction": "min_x_overlap_fraction",
    "maxPointDisplacement": "max_point_displacement",
    "maxHitDisplacement": "max_hit_displacement",
    "minMatchedPointFraction": "min_matched_point_fraction",
    # historical spelling still found in older configuration files
    "minMatchedPointraction": "min_matched_point_fraction",
    "MinMatchedPointraction": "min_matched_point_fraction",
    "minMatchedHits": "min_matched_hits",
    "nSamplingPoints": "n_sampling_points",
}

_REQUIRED = ("input_cluster_list_name_u", "input_cluster_list_name_v", "input_cluster_list_name_w")


@dataclass(frozen=True)
class MatchingConfig:
    r"""
    Settings of the cross-view track matching.

    Attributes
    ----------
    input_cluster_list_name_u, input_cluster_list_name_v, input_cluster_list_name_w : str
        Names of the three per-view input cluster lists (required).
    cluster_min_length : float
        Minimum cluster length for a cluster to be *clean* (default ``10``).
    sliding_fit_half_window : int
        Half window, in layers, of every sliding fit (default ``15``).
    layer_pitch : float
        Layer pitch of the sliding fit (default ``1.0``).
    min_x_overlap : float
        Minimum drift-coordinate overlap of a pair (default ``3.0``).
    min_x_overlap_fraction : float
        Minimum overlap / joint span of a pair (default ``0.8``).
    max_point_displacement : float
        Hit ↔ projected-point distance bound (default ``1.5``).
    max_hit_displacement : float
        Hit ↔ hit distance bound of the mutual-proximity gate (default ``5.0``).
    min_matched_point_fraction : float
        Minimum fraction of corroborated projected points (default ``0.8``).
    min_matched_hits : int
        Minimum number of matched hits (default ``10``).
    n_sampling_points : int
        Samples taken over the overlap (default ``100``).
    """
    input_cluster_list_name_u: str
    input_cluster_list_name_v: str
    input_cluster_list_name_w: str
    cluster_min_length: float = 10.0
    sliding_fit_half_window: int = 15
    layer_pitch: float = 1.0
    min_x_overlap: float = 3.0
    min_x_overlap_fraction: float = 0.8
    max_point_displacement: float = 1.5
    max_hit_displacement: float = 5.0
    min_matched_point_fraction: float = 0.8
    min_matched_hits: int = 10
    n_sampling_points: int = 100

    def __post_init__(self) -> None:
        for name in _REQUIRED:
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{name} must be a non-empty string.")
        if self.cluster_min_length < 0.0:
            raise ValueError("cluster_min_length must be >= 0.")
        if self.sliding_fit_half_window < 0:
            raise ValueError("sliding_fit_half_window must be >= 0.")
        if self.layer_pitch <= 0.0:
            raise ValueError("layer_pitch must be > 0.")
        if not (0.0 <= self.min_x_overlap_fraction <= 1.0):
            raise ValueError("min_x_overlap_fraction must be in [0,1].")
        if not (0.0 <= self.min_matched_point_fraction <= 1.0):
            raise ValueError("min_matched_point_fraction must be in [0,1].")
        if self.max_point_displacement <= 0.0 or self.max_hit_displacement <= 0.0:
            raise ValueError("Displacement bounds must be > 0.")
        if self.min_matched_hits < 0:
            raise ValueError("min_matched_hits must be >= 0.")
        if self.n_sampling_points < 1:
            raise ValueError("n_sampling_points must be >= 1.")

    @classmethod
    def from_mapping(cls, block: Mapping[str, Any]) -> "MatchingConfig":
        r"""
        Build a config from a mapping of camelCase keys or field names.

        Raises
        ------
        KeyError
            If an input cluster list name is missing.
        ValueError
            On unknown keys or out-of-range values.
        """
        field_names = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        unknown = []
        for key, value in block.items():
            name = _CAMEL_TO_FIELD.get(key, key)
            if name not in field_names:
                unknown.append(key)
                continue
            kwargs[name] = value
        if unknown:
            raise ValueError(f"Unknown matching config keys: {', '.join(sorted(unknown))}")
        missing = [n for n in _REQUIRED if n not in kwargs]
        if missing:
            raise KeyError(f"Missing required config keys: {', '.join(missing)}")

        for name in ("sliding_fit_half_window", "min_matched_hits", "n_sampling_points"):
            if name in kwargs:
                kwargs[name] = int(kwargs[name])
        for name in (
            "cluster_min_length", "layer_pitch", "min_x_overlap", "min_x_overlap_fraction",
            "max_point_displacement", "max_hit_displacement", "min_matched_point_fraction",
        ):
            if name in kwargs:
                kwargs[name] = float(kwargs[name])
        return cls(**kwargs)

    def list_name(self, view: View) -> str:
        if view is View.U:
            return self.input_cluster_list_name_u
        if view is View.V:
            return self.input_cluster_list_name_v
        return self.input_cluster_list_name_w

    def list_names(self) -> Dict[View, str]:
        return {view: self.list_name(view) for view in View}


def load_config(config_path: Path) -> MutableMapping[str, Any]:
    r"""
    Load a JSON configuration with :mod:`orjson`.

    Parameters
    ----------
    config_path : pathlib.Path
        Path to the JSON file.

    Returns
    -------
    dict
        Parsed configuration.

    Raises
    ------
    ValueError
        If the file cannot be parsed or is not a JSON object.
    """
    try:
        cfg = orjson.loads(Path(config_path).read_bytes())
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ValueError(f"{config_path} must contain a JSON object.")
    return cfg


def matching_block(cfg: Mapping[str, Any]) -> Mapping[str, Any]:
    r"""
    The matching settings of a parsed config: the ``"matching"`` block if present,
    else the top level without the ``"geometry"`` block.
    """
    if isinstance(cfg.get("matching"), dict):
        return cfg["matching"]
    return {k: v for k, v in cfg.items() if k != "geometry"}
