"""
pbsummary CLI - summarize per-cluster statistical tests of knockout scRNA-seq.

Commands:
    pbsummary deg        - Pseudobulk differential expression per cluster
    pbsummary abundance  - Differential abundance of clusters (propeller, mixed model)
"""

import argparse
import sys
from typing import Optional, List

from pbsummary import __version__


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for pbsummary."""
    parser = argparse.ArgumentParser(
        prog="pbsummary",
        description="Multiple-testing summaries of per-cluster scRNA-seq tests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  deg           Pseudobulk differential expression per cluster
  abundance     Differential abundance of clusters (propeller, mixed model)

Examples:
  pbsummary deg --counts counts.tsv.gz --metadata cells.tsv \\
      --group-cols leiden_0.5 --sample-col hashtag --condition-col genotype \\
      --contrast KO WT --output results/deg
  pbsummary abundance --metadata cells.tsv --cluster-cols leiden_0.5 \\
      --sample-col hashtag --condition-col genotype --control WT --output results/da
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from pbsummary.cli import abundance, deg
    deg.setup_parser(subparsers)
    abundance.setup_parser(subparsers)

    argv = sys.argv[1:] if args is None else list(args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw arguments let config merging tell explicit flags from defaults
    parsed_args.raw_args = argv[1:]

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
