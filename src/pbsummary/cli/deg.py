"""
CLI for pseudobulk differential expression summarized across clusters.

For every grouping column (e.g. clustering resolutions leiden_0.2,
leiden_0.5) each cluster is pseudobulked per sample, filtered for expressed
genes and tested ``TEST`` vs ``REFERENCE``. One summary row per cluster
records how many genes pass each adjusted p-value threshold, split by
direction.

Usage:
    pbsummary deg \\
        --counts data/counts.tsv.gz \\
        --metadata data/cells.tsv \\
        --group-cols leiden_0.2 leiden_0.5 \\
        --sample-col hashtag \\
        --condition-col genotype \\
        --contrast KO WT \\
        --names data/features.tsv \\
        --output results/deg
"""

from __future__ import annotations

import argparse
from datetime import datetime
from pathlib import Path

from pbsummary.cli._common import add_summary_arguments, apply_config, run_settings, setup_logging
from pbsummary.cli._validators import _non_negative_float, _positive_int


def setup_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the deg subcommand to the parser."""
    parser = subparsers.add_parser(
        "deg",
        help="Pseudobulk differential expression summarized per cluster",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Input files
    parser.add_argument(
        "--counts",
        type=Path,
        required=True,
        help="Count table (features × cells, .tsv/.csv, optionally gzipped)",
    )
    parser.add_argument(
        "--metadata", "-m",
        type=Path,
        required=True,
        help="Cell metadata table (one row per cell barcode)",
    )
    parser.add_argument(
        "--names",
        type=Path,
        default=None,
        help="Two-column feature id -> gene name lookup for display",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Output directory for results",
    )

    # Experimental design
    parser.add_argument(
        "--group-cols",
        nargs="+",
        required=True,
        help="Metadata columns defining groups, one summary table each "
             "(e.g. several clustering resolutions)",
    )
    parser.add_argument(
        "--sample-col",
        default="sample",
        help="Metadata column with the sample (hashtag) of each cell (default: sample)",
    )
    parser.add_argument(
        "--condition-col",
        default="condition",
        help="Metadata column with the condition of each cell (default: condition)",
    )
    parser.add_argument(
        "--contrast",
        nargs=2,
        required=True,
        metavar=("TEST", "REFERENCE"),
        help="Conditions to compare, e.g. --contrast KO WT",
    )

    # Filtering
    parser.add_argument(
        "--min-count",
        type=_non_negative_float,
        default=10,
        help="Minimum pseudobulk count per sample for a gene to count as expressed (default: 10)",
    )
    parser.add_argument(
        "--min-group-size",
        type=_positive_int,
        default=3,
        help="Minimum samples in which a gene must be expressed (default: 3)",
    )
    parser.add_argument(
        "--min-cells",
        type=_positive_int,
        default=10,
        help="Minimum cells for a sample to enter a cluster's pseudobulk (default: 10)",
    )

    add_summary_arguments(parser)
    parser.set_defaults(func=run_deg)


def run_deg(args: argparse.Namespace) -> int:
    """Execute the deg command."""
    from pbsummary.core.errors import InputStructureError
    from pbsummary.io import (
        load_count_matrix,
        load_name_mapping,
        safe_filename,
        write_group_details,
        write_parameters,
        write_summary_tables,
    )
    from pbsummary.stats import aggregate, build_deg_groups

    setup_logging(args.verbose)

    try:
        args = apply_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Config file error: {e}")
        return 1

    start_time = datetime.now()
    print(f"\n{'='*70}")
    print("  Pseudobulk Differential Expression Summary")
    print(f"{'='*70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    test, reference = args.contrast
    try:
        print(f"Loading counts: {args.counts}")
        matrix = load_count_matrix(
            args.counts,
            args.metadata,
            required_columns=list(args.group_cols) + [args.sample_col, args.condition_col],
        )
        print(f"  {matrix.n_features} features × {matrix.n_cells} cells")

        names = None
        if args.names:
            print(f"Loading names: {args.names}")
            names = load_name_mapping(args.names)
            print(f"  {len(names)} display names")

        # Build every group before testing any so structural errors fail fast
        plans = {
            group_col: build_deg_groups(
                matrix,
                group_col=group_col,
                sample_col=args.sample_col,
                condition_col=args.condition_col,
                contrast=(test, reference),
                min_count=args.min_count,
                min_group_size=args.min_group_size,
                min_cells=args.min_cells,
            )
            for group_col in args.group_cols
        }
    except (FileNotFoundError, InputStructureError) as e:
        print(f"ERROR: {e}")
        return 1

    print(f"\nContrast: {test} vs {reference}")
    raw = args.pvalue_threshold if args.pvalue_threshold is not None else "off"
    print(f"Thresholds: {args.thresholds} (adjusted), {raw} (raw)")

    args.output.mkdir(parents=True, exist_ok=True)
    summary = {}
    for group_col, specs in plans.items():
        print(f"\n{group_col}: testing {len(specs)} groups")
        result = aggregate(
            specs,
            thresholds=args.thresholds,
            pvalue_threshold=args.pvalue_threshold,
            floor=args.floor,
            significance_threshold=args.significance,
            n_workers=args.workers,
        )

        paths = write_summary_tables(result, args.output, group_col, args.significance)
        write_group_details(result, args.output / "details" / safe_filename(group_col), names=names)

        n_sig = len(result.significant())
        n_failed = len(result.failed_groups)
        print(f"  {n_sig} groups with primary p < {args.significance}, {n_failed} failed")
        print(f"  Summary: {paths['summary']}")
        summary[group_col] = {
            'n_groups': len(result),
            'n_significant': n_sig,
            'n_failed': n_failed,
        }

        if args.plots:
            from pbsummary.viz import plot_tier_counts

            threshold = 0.05 if 0.05 in result.thresholds else result.thresholds[0]
            fig = plot_tier_counts(result.to_dataframe(), threshold, title=group_col)
            fig.save(args.output / "plots" / f"{safe_filename(group_col)}_tiers.png")
            fig.close()

    params = {
        'command': 'deg',
        'timestamp': start_time.isoformat(),
        'counts': args.counts,
        'metadata': args.metadata,
        'names': args.names,
        'group_cols': list(args.group_cols),
        'sample_col': args.sample_col,
        'condition_col': args.condition_col,
        'contrast': [test, reference],
        'settings': run_settings(args).to_dict(),
        'results': summary,
    }
    write_parameters(params, args.output / "parameters.json")

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"\nDone in {elapsed:.1f}s. Results in {args.output}")
    return 0
