"""
CLI for differential abundance of clusters between conditions.

For every cluster column, writes the samples × clusters cell counts and
proportions, runs propeller once per ``<knockout>_vs_<control>`` contrast
and, with ``--batch-col``, a mixed model per cluster with a random batch
intercept. Each analysis is summarized with one row per group.

Usage:
    pbsummary abundance \\
        --metadata data/cells.tsv \\
        --cluster-cols leiden_0.2 leiden_0.5 \\
        --sample-col hashtag \\
        --condition-col genotype \\
        --control WT \\
        --batch-col lane \\
        --output results/abundance
"""

from __future__ import annotations

import argparse
from datetime import datetime
from pathlib import Path

from pbsummary.cli._common import add_summary_arguments, apply_config, run_settings, setup_logging


def setup_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the abundance subcommand to the parser."""
    parser = subparsers.add_parser(
        "abundance",
        help="Differential abundance of clusters (propeller, mixed model)",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--metadata", "-m",
        type=Path,
        required=True,
        help="Cell metadata table (one row per cell barcode)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Output directory for results",
    )
    parser.add_argument(
        "--cluster-cols",
        nargs="+",
        required=True,
        help="Cluster label columns, one analysis each",
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
        "--control",
        required=True,
        help="Reference condition every other condition is compared against",
    )
    parser.add_argument(
        "--batch-col",
        default=None,
        help="Metadata column with the batch of each sample; enables the "
             "per-cluster mixed model with a random batch intercept",
    )
    parser.add_argument(
        "--transform",
        choices=["logit", "asin"],
        default="logit",
        help="Proportion transform (default: logit)",
    )
    parser.add_argument(
        "--tabulate",
        nargs=2,
        action="append",
        default=None,
        metavar=("ROW_COL", "COL_COL"),
        help="Also write a cell count table of two label columns, "
             "e.g. --tabulate hashtag demux_call (repeatable)",
    )

    add_summary_arguments(parser)
    parser.set_defaults(func=run_abundance)


def _summarize(specs, args, out_dir: Path, prefix: str) -> dict:
    from pbsummary.io import safe_filename, write_group_details, write_summary_tables
    from pbsummary.stats import aggregate

    result = aggregate(
        specs,
        thresholds=args.thresholds,
        pvalue_threshold=args.pvalue_threshold,
        floor=args.floor,
        significance_threshold=args.significance,
        n_workers=args.workers,
    )
    paths = write_summary_tables(result, out_dir, prefix, args.significance)
    write_group_details(result, out_dir / "details" / safe_filename(prefix))

    if args.plots:
        from pbsummary.viz import plot_tier_counts

        threshold = 0.05 if 0.05 in result.thresholds else result.thresholds[0]
        fig = plot_tier_counts(result.to_dataframe(), threshold, title=prefix)
        fig.save(out_dir / "plots" / f"{safe_filename(prefix)}_tiers.png")
        fig.close()

    n_sig = len(result.significant())
    n_failed = len(result.failed_groups)
    print(f"  {prefix}: {len(result)} groups, {n_sig} with primary p < "
          f"{args.significance}, {n_failed} failed")
    print(f"  Summary: {paths['summary']}")
    return {'n_groups': len(result), 'n_significant': n_sig, 'n_failed': n_failed}


def run_abundance(args: argparse.Namespace) -> int:
    """Execute the abundance command."""
    from pbsummary.core.errors import InputStructureError
    from pbsummary.io import load_table, safe_filename, write_parameters, write_table
    from pbsummary.stats.abundance import (
        build_mixed_groups,
        build_propeller_groups,
        cell_count_table,
        cluster_proportions,
    )

    setup_logging(args.verbose)

    try:
        args = apply_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Config file error: {e}")
        return 1

    start_time = datetime.now()
    print(f"\n{'='*70}")
    print("  Differential Abundance Summary")
    print(f"{'='*70}")
    print(f"Started: {start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")

    try:
        print(f"Loading metadata: {args.metadata}")
        cell_meta = load_table(args.metadata)
        print(f"  {len(cell_meta)} cells")

        tables = [
            (row_col, col_col, cell_count_table(cell_meta, row_col, col_col))
            for row_col, col_col in (args.tabulate or [])
        ]

        # Build every group before testing any so structural errors fail fast
        plans = {}
        for cluster_col in args.cluster_cols:
            counts = cell_count_table(cell_meta, args.sample_col, cluster_col)
            propeller_specs = build_propeller_groups(
                cell_meta,
                cluster_col=cluster_col,
                sample_col=args.sample_col,
                condition_col=args.condition_col,
                control=args.control,
                transform=args.transform,
            )
            mixed_specs = None
            if args.batch_col:
                mixed_specs = build_mixed_groups(
                    cell_meta,
                    cluster_col=cluster_col,
                    sample_col=args.sample_col,
                    condition_col=args.condition_col,
                    batch_col=args.batch_col,
                    control=args.control,
                    transform=args.transform,
                )
            plans[cluster_col] = (counts, propeller_specs, mixed_specs)
    except (FileNotFoundError, InputStructureError) as e:
        print(f"ERROR: {e}")
        return 1

    out_dir = args.output
    out_dir.mkdir(parents=True, exist_ok=True)

    for row_col, col_col, table in tables:
        write_table(
            table,
            out_dir / f"{safe_filename(row_col)}_by_{safe_filename(col_col)}_counts.tsv",
            index=True,
        )

    summary = {}
    for cluster_col, (counts, propeller_specs, mixed_specs) in plans.items():
        print(f"\n{cluster_col}: {counts.shape[0]} samples × {counts.shape[1]} clusters")
        stem = safe_filename(cluster_col)
        write_table(counts, out_dir / f"{stem}_cell_counts.tsv", index=True)
        try:
            write_table(cluster_proportions(counts), out_dir / f"{stem}_proportions.tsv", index=True)
        except InputStructureError as e:
            print(f"  Warning: proportions not written: {e}")

        summary[cluster_col] = {
            'propeller': _summarize(propeller_specs, args, out_dir, f"{cluster_col}_propeller"),
        }
        if mixed_specs is not None:
            summary[cluster_col]['mixed'] = _summarize(
                mixed_specs, args, out_dir, f"{cluster_col}_mixed"
            )

    params = {
        'command': 'abundance',
        'timestamp': start_time.isoformat(),
        'metadata': args.metadata,
        'cluster_cols': list(args.cluster_cols),
        'sample_col': args.sample_col,
        'condition_col': args.condition_col,
        'control': args.control,
        'batch_col': args.batch_col,
        'transform': args.transform,
        'settings': run_settings(args).to_dict(),
        'results': summary,
    }
    write_parameters(params, out_dir / "parameters.json")

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"\nDone in {elapsed:.1f}s. Results in {out_dir}")
    return 0
