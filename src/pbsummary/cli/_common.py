"""Options and helpers shared by the pbsummary subcommands."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from pbsummary.cli._validators import _positive_int, _probability
from pbsummary.cli.config import FilterConfig, RunConfig
from pbsummary.stats.normalize import P_VALUE_FLOOR
from pbsummary.stats.thresholds import DEFAULT_THRESHOLDS


def add_summary_arguments(parser: argparse.ArgumentParser) -> None:
    """Threshold, worker and config options shared by all commands."""
    parser.add_argument(
        "--thresholds",
        type=_probability,
        nargs="+",
        default=list(DEFAULT_THRESHOLDS),
        help="Adjusted p-value thresholds for the tier columns (default: 0.01 0.05 0.1)",
    )
    parser.add_argument(
        "--pvalue-threshold",
        type=_probability,
        default=0.05,
        help="Raw p-value threshold tracked as an extra tier (default: 0.05)",
    )
    parser.add_argument(
        "--no-pvalue-tier",
        dest="pvalue_threshold",
        action="store_const",
        const=None,
        default=argparse.SUPPRESS,
        help="Do not track a raw p-value tier",
    )
    parser.add_argument(
        "--floor",
        type=_probability,
        default=P_VALUE_FLOOR,
        help="Replacement for p-values of exactly 0 (default: 1e-300)",
    )
    parser.add_argument(
        "--significance",
        type=_probability,
        default=0.05,
        help="Primary p-value cut-off for the significant table (default: 0.05)",
    )
    parser.add_argument(
        "--workers", "-j",
        type=_positive_int,
        default=1,
        help="Groups tested in parallel (default: 1)",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to YAML/JSON config file (optional, CLI args override config values)",
    )
    parser.add_argument(
        "--plots",
        action="store_true",
        help="Also write tier count plots (PNG)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging",
    )


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def apply_config(args: argparse.Namespace) -> argparse.Namespace:
    """Merge ``--config`` into ``args`` (explicit CLI flags win)."""
    if not args.config:
        return args
    from pbsummary.cli.config import load_config, merge_config_with_args, validate_config

    print(f"Loading configuration from: {args.config}")
    config = load_config(args.config)
    validate_config(config)
    merged = merge_config_with_args(config, args, getattr(args, 'raw_args', None))
    print("  Configuration loaded successfully")
    return merged


def run_settings(args: argparse.Namespace) -> RunConfig:
    """Effective settings after config merge, for provenance."""
    return RunConfig(
        thresholds=list(args.thresholds),
        pvalue_threshold=args.pvalue_threshold,
        floor=args.floor,
        significance=args.significance,
        workers=args.workers,
        filtering=FilterConfig(
            min_count=getattr(args, 'min_count', FilterConfig.min_count),
            min_group_size=getattr(args, 'min_group_size', FilterConfig.min_group_size),
            min_cells=getattr(args, 'min_cells', FilterConfig.min_cells),
        ),
    )


