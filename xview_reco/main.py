#!/usr/bin/env python3
r"""
Cross-view cluster matching runner (headless-safe).

This script loads one event of 2D clusters in the three wire-plane views
(U, V, W), runs one cycle of :class:`xview_reco.algorithm.CrossViewTrackMatching`
and writes the revised hit → cluster assignment.

Mathematical conventions
------------------------
Each hit is a point :math:`(x, p)` in its view, with :math:`x` the shared drift
coordinate and :math:`p = z\cos\theta - y\sin\theta` the wire coordinate of a
view with wire angle :math:`\theta`. Two views determine :math:`(y, z)` and
therefore the expected hit positions in the third.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   xview-reco -f hits.csv --config config.json -o revised.csv
   xview-reco -f hits.csv --config config.json --plot -v
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import List, Optional, Tuple

import xview_reco.data as xv_data
import xview_reco.metrics as xv_metrics
from xview_reco.algorithm import CrossViewTrackMatching
from xview_reco.config import MatchingConfig, load_config, matching_block
from xview_reco.geometry import View, WireGeometry


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with options for the input event, configuration, output,
        plotting and verbosity.
    """
    p = argparse.ArgumentParser(description="Match and repair 2D clusters across the U, V and W views.")
    p.add_argument("-f", "--file", type=str, required=True,
                   help="Input hits CSV with columns hit_id, view, x, z, cluster_id.")
    p.add_argument("--config", type=str, default="config.json",
                   help="Path to JSON config with the matching settings (default: config.json).")
    p.add_argument("-o", "--output", type=str, default=None,
                   help="If set, write the revised hit assignment CSV to this path.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show event displays before and after matching (default: False).")
    p.add_argument("--no-plot", dest="plot", action="store_false",
                   help="Disable plotting.")
    p.add_argument("--plot-matches", type=int, default=3,
                   help="With --plot, number of accepted pair matches to draw per view (default: 3).")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.

    Notes
    -----
    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Enforce a headless-safe Matplotlib configuration when plotting is disabled.

    Must be called before :mod:`xview_reco.plotting` is imported.

    Parameters
    ----------
    enable_plots : bool
        If ``False``, set backend to ``'Agg'`` (non-interactive), turn off
        interactive mode, and neutralize ``plt.show()``.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as _plt
    _plt.ioff()
    _plt.show = lambda *a, **k: None  # type: ignore[assignment]


def build_settings(config_path: Path) -> Tuple[MatchingConfig, WireGeometry]:
    r"""
    Read the JSON config and build the matching settings and wire geometry.

    Raises
    ------
    FileNotFoundError
        If the config file does not exist.
    ValueError
        If the file is not valid JSON or holds invalid settings.
    KeyError
        If a required input list name is missing.
    """
    if not config_path.is_file():
        raise FileNotFoundError(f"No config file at {config_path}")
    cfg = load_config(config_path)
    return MatchingConfig.from_mapping(matching_block(cfg)), WireGeometry.from_mapping(cfg.get("geometry"))


def main(argv: Optional[List[str]] = None) -> None:
    r"""
    End-to-end pipeline: **load → select → fit → match → rewrite → write**.

    Pipeline
    --------
    1. Parse CLI (:func:`build_parser`) and set up logging (:func:`setup_logging`).
    2. Enforce headless plotting guard (:func:`apply_plotting_guard`).
    3. Build settings (:func:`build_settings`) and load the event
       (:func:`xview_reco.data.load_event`).
    4. Run one matching cycle and log per-view statistics.
    5. Verify exclusive hit membership, score against truth when a
       ``particle_id`` column is present, and optionally write the result.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    apply_plotting_guard(args.plot)

    cfg_path = Path(args.config)
    logging.info("Reading config from %s", cfg_path)
    config, geometry = build_settings(cfg_path)
    list_names = config.list_names()

    t0 = time.time()
    logging.info("Loading event from %s", args.file)
    hit_pool, manager = xv_data.load_event(args.file, list_names)
    logging.info("Input assignment ratio: %.4f of %d hits clustered", hit_pool.get_assignment_ratio(), len(hit_pool))

    if args.plot:
        import xview_reco.plotting as xv_plot
        xv_plot.plot_view_clusters(manager, list_names, title="Input clusters")

    for view in View:
        stats = xv_metrics.cluster_statistics(manager, list_names[view])
        logging.info(
            "Input %s: %d clusters (%d available), %d hits",
            view.value, stats["n_clusters"], stats["n_available"], stats["n_hits"],
        )

    t1 = time.time()
    algorithm = CrossViewTrackMatching(config, geometry)
    result = algorithm.run(manager)
    t2 = time.time()

    for view in View:
        a_stats = xv_metrics.association_statistics(result.associations[view])
        logging.info(
            "View %s: %d matches claimed %d hits (%d ambiguous)",
            view.value, a_stats["n_matches"], a_stats["n_claimed_hits"], a_stats["n_ambiguous_hits"],
        )
        stats = xv_metrics.cluster_statistics(manager, list_names[view])
        logging.info("Output %s: %d clusters, %d hits", view.value, stats["n_clusters"], stats["n_hits"])

    n_checked = xv_metrics.check_exclusive_membership(manager, list_names.values())
    logging.info("Exclusive membership verified for %d clustered hits", n_checked)
    logging.info("Output assignment ratio: %.4f", hit_pool.get_assignment_ratio())
    logging.info("Run status: %s | %s", result.status, result.get_statistics())

    out = xv_data.clusters_to_frame(manager, list_names.values())
    if "particle_id" in hit_pool.hits.columns:
        truth = hit_pool.hits[["hit_id", "particle_id"]]
        before = xv_metrics.cluster_truth_metrics(hit_pool.hits, truth)
        after = xv_metrics.cluster_truth_metrics(out, truth)
        logging.info(
            "Purity %.4f -> %.4f | completeness %.4f -> %.4f",
            before["purity"], after["purity"], before["completeness"], after["completeness"],
        )

    if args.output:
        out_path = Path(args.output)
        out.to_csv(out_path, index=False)
        logging.info("Wrote %d hit assignments to %s", len(out), out_path)

    if args.plot:
        import xview_reco.plotting as xv_plot
        xv_plot.plot_view_clusters(manager, list_names, title="Revised clusters")
        for view in View:
            xv_plot.plot_accepted_matches(result.records.get(view, []), hit_pool, max_plots=args.plot_matches)

    logging.info("Timing: load %.3fs | matching %.3fs | total %.3fs", t1 - t0, t2 - t1, time.time() - t0)


if __name__ == "__main__":
    main()
