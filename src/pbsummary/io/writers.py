"""
Writers for summary tables, per-group details and run parameters.

Output layout for one summarized analysis with prefix ``leiden_0_5``:

    leiden_0_5_summary.tsv          one row per group, tier columns
    leiden_0_5_significant.tsv      groups with primary p < threshold
    leiden_0_5_failed_groups.tsv    degenerate/failed groups with reason
    details/leiden_0_5/<group>.tsv  normalized per-feature results

All tables are tab separated with a header row so they open directly in
R (``read.delim``), Excel and pandas. Missing values are written as
empty fields.

Examples:
    >>> from pathlib import Path
    >>> paths = write_summary_tables(result, Path("results"), "leiden_0_5")
    >>> paths['summary']
    PosixPath('results/leiden_0_5_summary.tsv')
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import pandas as pd

from pbsummary.core.names import map_names
from pbsummary.core.results import results_to_frame
from pbsummary.stats.aggregator import AggregationResult

logger = logging.getLogger(__name__)

__all__ = [
    'safe_filename',
    'write_table',
    'write_summary_tables',
    'write_group_details',
    'write_parameters',
]

_UNSAFE = re.compile(r'[^A-Za-z0-9._-]+')


def safe_filename(name: str) -> str:
    """Replace characters that are unsafe in file names with underscores."""
    cleaned = _UNSAFE.sub('_', str(name)).strip('._')
    return cleaned or 'group'


def write_table(df: pd.DataFrame, path: Path | str, index: bool = False) -> Path:
    """Write ``df`` as TSV, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        df.to_csv(path, sep='\t', index=index)
    except Exception as e:
        raise OSError(f"Failed to write {path}: {e}") from e
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path


def write_summary_tables(
    result: AggregationResult,
    out_dir: Path | str,
    prefix: str,
    significance_threshold: float | None = None,
) -> dict[str, Path]:
    """
    Write the summary, significant and failed-group tables of one run.

    Args:
        result: Output of ``aggregate``
        out_dir: Directory for the tables (created if needed)
        prefix: File name prefix, e.g. the clustering resolution
        significance_threshold: Cut-off for the significant view; defaults
            to the threshold the result was aggregated with

    Returns:
        Mapping of table kind ('summary', 'significant', 'failed') to path.
    """
    out_dir = Path(out_dir)
    prefix = safe_filename(prefix)
    return {
        'summary': write_table(result.to_dataframe(), out_dir / f"{prefix}_summary.tsv"),
        'significant': write_table(
            result.significant_dataframe(significance_threshold),
            out_dir / f"{prefix}_significant.tsv",
        ),
        'failed': write_table(result.failed_dataframe(), out_dir / f"{prefix}_failed_groups.tsv"),
    }


def write_group_details(
    result: AggregationResult,
    out_dir: Path | str,
    names: Mapping[str, str] | None = None,
) -> dict[str, Path]:
    """
    Write one table of normalized per-feature results per group.

    Rows are sorted by adjusted p-value. A ``display_name`` column is added
    next to ``feature_id``; ids without a lookup entry keep their id.
    Groups that failed have no results and are skipped.

    Returns:
        Mapping of group id to the written path.
    """
    out_dir = Path(out_dir)
    paths = {}
    used: set[str] = set()
    for group_id, results in result.details.items():
        if not results:
            continue
        df = results_to_frame(results)
        df.insert(1, 'display_name', map_names(df['feature_id'], names))
        df = df.sort_values('adjusted_p_value', kind='mergesort')

        # distinct ids may sanitize to the same name
        stem = safe_filename(group_id)
        candidate, n = stem, 1
        while candidate in used:
            n += 1
            candidate = f"{stem}_{n}"
        used.add(candidate)

        paths[group_id] = write_table(df, out_dir / f"{candidate}.tsv")
    return paths


def _json_default(value: Any) -> Any:
    if isinstance(value, (np.integer, np.floating)):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_parameters(params: Mapping[str, Any], path: Path | str) -> Path:
    """Write run parameters as indented JSON for provenance."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(dict(params), f, indent=2, default=_json_default)
    logger.info(f"Wrote parameters to {path}")
    return path
