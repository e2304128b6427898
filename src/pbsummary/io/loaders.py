"""
Loaders for count matrices, cell metadata and name lookup tables.

Expected inputs (produced by the upstream single-cell pipeline):
    - counts: features × cells table, first column feature ids, one column
      per cell barcode (.tsv/.csv, optionally gzipped)
    - metadata: one row per cell barcode, first column the barcode, other
      columns sample/hashtag calls, conditions and cluster labels
    - names: two-column lookup, feature id -> display name (e.g. Ensembl id
      -> gene symbol)

Examples:
    >>> from pathlib import Path
    >>> from pbsummary.io.loaders import load_count_matrix, load_name_mapping
    >>> matrix = load_count_matrix(Path("counts.tsv.gz"), Path("cells.tsv"))
    >>> names = load_name_mapping(Path("features.tsv"))
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from pbsummary.core.errors import InputStructureError
from pbsummary.core.matrix import CountMatrix
from pbsummary.core.names import NameMapping

logger = logging.getLogger(__name__)

__all__ = ['load_table', 'load_count_matrix', 'load_name_mapping']

_DELIMITERS = {'.tsv': '\t', '.txt': '\t', '.tab': '\t', '.csv': ','}


def _delimiter(path: Path) -> str | None:
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] in ('.gz', '.bz2', '.zip', '.xz'):
        suffixes = suffixes[:-1]
    return _DELIMITERS.get(suffixes[-1]) if suffixes else None


def load_table(path: Path | str, index_col: int | None = 0, **kwargs) -> pd.DataFrame:
    """
    Read a delimited table, choosing the delimiter from the file suffix.

    Unknown suffixes fall back to delimiter sniffing.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    sep = _delimiter(path)
    if sep is None:
        return pd.read_csv(path, sep=None, engine='python', index_col=index_col, **kwargs)
    return pd.read_csv(path, sep=sep, index_col=index_col, **kwargs)


def load_count_matrix(
    counts_path: Path | str,
    metadata_path: Path | str,
    required_columns: list[str] | None = None,
) -> CountMatrix:
    """
    Load counts and cell metadata into a CountMatrix.

    Cells present in only one of the two tables are dropped with a warning;
    the remaining cells keep the column order of the counts table.

    Args:
        counts_path: Features × cells count table
        metadata_path: Cells × annotations table
        required_columns: Metadata columns that must be present

    Raises:
        InputStructureError: Required columns are missing, no cells are
            shared between the tables, or counts are not numeric.
    """
    counts = load_table(counts_path)
    metadata = load_table(metadata_path)
    counts.columns = counts.columns.astype(str)
    counts.index = counts.index.astype(str)
    metadata.index = metadata.index.astype(str)

    if required_columns:
        missing = [c for c in required_columns if c not in metadata.columns]
        if missing:
            raise InputStructureError(
                f"{metadata_path}: missing required columns {missing}. "
                f"Available: {list(metadata.columns)}"
            )

    shared = counts.columns[counts.columns.isin(metadata.index)]
    if len(shared) == 0:
        raise InputStructureError(
            f"No cell barcodes shared between {counts_path} and {metadata_path}"
        )
    n_dropped = (len(counts.columns) - len(shared)) + (len(metadata.index) - len(shared))
    if n_dropped:
        logger.warning(f"Dropping {n_dropped} cells present in only one input table")

    try:
        data = counts[shared].to_numpy(dtype=np.float64)
    except ValueError as e:
        raise InputStructureError(f"{counts_path}: counts must be numeric ({e})") from e

    matrix = CountMatrix(
        counts=data,
        feature_ids=pd.Index(counts.index, name='feature_id'),
        cell_ids=pd.Index(shared, name='cell_id'),
        cell_metadata=metadata.loc[shared].set_axis(pd.Index(shared, name='cell_id')),
    )
    logger.info(f"Loaded {matrix}")
    return matrix


def load_name_mapping(
    path: Path | str,
    key_column: int | str = 0,
    value_column: int | str = 1,
) -> NameMapping:
    """
    Load a feature id -> display name lookup table.

    Rows with an empty display name are skipped; for duplicated ids the
    first entry wins.

    Args:
        path: Two-column (or wider) table with a header row
        key_column: Column name or position of the feature ids
        value_column: Column name or position of the display names
    """
    table = load_table(path, index_col=None, dtype=str)
    try:
        keys = table[key_column] if isinstance(key_column, str) else table.iloc[:, key_column]
        values = table[value_column] if isinstance(value_column, str) else table.iloc[:, value_column]
    except (KeyError, IndexError) as e:
        raise InputStructureError(f"{path}: lookup column not found ({e})") from e

    pairs = pd.DataFrame({'key': keys, 'value': values}).dropna()
    duplicated = pairs['key'].duplicated()
    if duplicated.any():
        logger.warning(
            f"{path}: {int(duplicated.sum())} duplicated ids, keeping first occurrence"
        )
        pairs = pairs[~duplicated]

    logger.info(f"Loaded {len(pairs)} display names from {path}")
    return NameMapping(zip(pairs['key'], pairs['value']))
