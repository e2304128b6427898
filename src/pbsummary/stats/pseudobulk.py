"""
Pseudobulk differential expression per cell group.

Single cells from the same sample are not independent replicates. Summing
counts within each group × sample gives one "bulk" library per sample, and
bulk-style tests between knockout and reference samples then respect the
true replication level.

Statistical model per gene (within one group):
    log2CPM ~ condition

fitted by ordinary least squares for all genes at once, with a two-sided
t-test on the ``test - reference`` coefficient and Benjamini-Hochberg
adjustment across the genes that passed the expression filter.

References:
    - Crowell et al. (2020) muscat: Nat Commun 11:6077
    - Squair et al. (2021) Confronting false discoveries in single-cell
      differential expression. Nat Commun 12:5692
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from pbsummary.core.errors import DegenerateFit, InputStructureError
from pbsummary.core.matrix import CountMatrix
from pbsummary.stats.aggregator import GroupSpec
from pbsummary.stats.multitest import fdr_correction

logger = logging.getLogger(__name__)

__all__ = [
    'pseudobulk_aggregate',
    'expression_filter',
    'log_cpm',
    'sample_annotations',
    'sample_conditions',
    'sorted_labels',
    'PseudobulkTest',
    'build_deg_groups',
]


def sorted_labels(values: Sequence[Any]) -> list[str]:
    """Unique labels as strings, numeric labels in numeric order."""
    labels = pd.Series(values).dropna().astype(str).unique().tolist()
    try:
        return sorted(labels, key=float)
    except ValueError:
        return sorted(labels)


def pseudobulk_aggregate(
    matrix: CountMatrix,
    sample_col: str,
) -> tuple[pd.DataFrame, pd.Series]:
    """
    Sum counts of all cells per sample.

    Cells without a sample label (e.g. hashtag negatives or doublets) are
    ignored.

    Args:
        matrix: Cells to aggregate, typically one cluster
        sample_col: Metadata column with the sample label of each cell

    Returns:
        Tuple of (counts, n_cells): counts is a features × samples
        DataFrame, n_cells the number of cells summed per sample.
    """
    matrix.require_columns([sample_col])
    labels = matrix.cell_metadata[sample_col]
    valid = labels.notna().values
    labels = labels.astype(str)

    samples = sorted_labels(labels[valid])
    columns = {}
    n_cells = {}
    for sample in samples:
        mask = valid & (labels == sample).values
        summed = matrix.counts[:, mask].sum(axis=1)
        columns[sample] = np.asarray(summed).ravel()
        n_cells[sample] = int(mask.sum())

    counts = pd.DataFrame(columns, index=matrix.feature_ids)
    counts.columns.name = sample_col
    return counts, pd.Series(n_cells, name="n_cells", dtype=int)


def expression_filter(
    counts: pd.DataFrame,
    min_count: float = 10,
    min_group_size: int = 3,
) -> pd.Series:
    """
    Keep features with at least ``min_count`` counts in at least
    ``min_group_size`` samples.

    Returns:
        Boolean Series indexed by feature id.
    """
    if min_group_size < 1:
        raise ValueError(f"min_group_size must be >= 1, got {min_group_size}")
    passing = (counts >= min_count).sum(axis=1)
    return (passing >= min_group_size).rename("keep")


def log_cpm(counts: pd.DataFrame, prior_count: float = 0.5) -> pd.DataFrame:
    """log2 counts per million with a prior count to avoid log(0)."""
    lib_sizes = counts.sum(axis=0).astype(float)
    scaled = (counts + prior_count).div(lib_sizes + 2 * prior_count, axis=1)
    return np.log2(scaled * 1e6)


def sample_annotations(
    cell_metadata: pd.DataFrame,
    sample_col: str,
    columns: Sequence[str],
) -> pd.DataFrame:
    """
    Per-sample annotations derived from per-cell labels.

    Returns:
        DataFrame indexed by sample with one column per entry of ``columns``.

    Raises:
        InputStructureError: If a sample carries more than one value in any
            of ``columns``.
    """
    columns = list(columns)
    pairs = cell_metadata[[sample_col] + columns].dropna().astype(str).drop_duplicates()
    conflicting = pairs[sample_col][pairs[sample_col].duplicated()].unique().tolist()
    if conflicting:
        raise InputStructureError(
            f"Samples map to more than one value of {columns}: {conflicting}"
        )
    return pairs.set_index(sample_col)[columns]


def sample_conditions(
    cell_metadata: pd.DataFrame,
    sample_col: str,
    condition_col: str,
) -> pd.Series:
    """Condition of each sample, indexed by sample."""
    return sample_annotations(cell_metadata, sample_col, [condition_col])[condition_col]


@dataclass
class PseudobulkTest:
    """
    Test oracle comparing two conditions on pseudobulk counts of one group.

    Calling the instance runs the test and returns raw per-gene records
    (``feature_id``, ``p_value``, ``adjusted_p_value``, ``effect_size`` plus
    ``ave_log_cpm``, ``se`` and ``t`` extras).

    Attributes:
        counts: Features × samples pseudobulk counts (already filtered)
        conditions: Condition per sample, indexed by sample
        contrast: (test, reference) condition labels
        group_id: Label used in error messages
        prior_count: Prior count for log-CPM
        fdr_method: Multiple testing correction across genes

    Raises (on call):
        DegenerateFit: A contrast level has no samples, the design is rank
            deficient, or there are no residual degrees of freedom.
    """

    counts: pd.DataFrame
    conditions: pd.Series
    contrast: tuple[str, str]
    group_id: str | None = None
    prior_count: float = 0.5
    fdr_method: str = "BH"

    def _design(self) -> tuple[pd.DataFrame, NDArray[np.float64]]:
        test, reference = self.contrast
        cond = self.conditions.reindex(self.counts.columns).astype(str)
        used = cond.isin([test, reference]).values
        counts = self.counts.loc[:, used]
        cond = cond[used]

        n_test = int((cond == test).sum())
        n_ref = int((cond == reference).sum())
        if n_test == 0 or n_ref == 0:
            raise DegenerateFit(
                self.group_id,
                f"need samples from both {test!r} ({n_test}) and {reference!r} ({n_ref})",
            )

        lib_sizes = counts.sum(axis=0)
        if (lib_sizes <= 0).any():
            raise DegenerateFit(
                self.group_id,
                f"empty libraries: {lib_sizes[lib_sizes <= 0].index.tolist()}",
            )

        X = np.column_stack([np.ones(len(cond)), (cond == test).values.astype(float)])
        return counts, X

    def __call__(self) -> list[dict[str, Any]]:
        counts, X = self._design()
        n_samples, n_params = X.shape

        if np.linalg.matrix_rank(X) < n_params:
            raise DegenerateFit(self.group_id, "design matrix is rank deficient")
        df_resid = n_samples - n_params
        if df_resid < 1:
            raise DegenerateFit(
                self.group_id, f"no residual degrees of freedom ({n_samples} samples)"
            )

        # Y: (n_samples, n_features)
        Y = log_cpm(counts, prior_count=self.prior_count).to_numpy(dtype=float).T

        XtX_inv = np.linalg.inv(X.T @ X)
        beta = XtX_inv @ (X.T @ Y)
        residuals = Y - X @ beta
        residual_var = (residuals ** 2).sum(axis=0) / df_resid

        estimate = beta[1]
        se = np.sqrt(residual_var * XtX_inv[1, 1])
        se = np.maximum(se, 1e-10)  # Prevent division by zero
        t_value = estimate / se
        p_value = 2 * scipy_stats.t.sf(np.abs(t_value), df_resid)
        adj_p = fdr_correction(p_value, method=self.fdr_method)
        ave_log_cpm = Y.mean(axis=0)

        logger.debug(
            f"{self.group_id}: tested {Y.shape[1]} genes on {n_samples} samples "
            f"(df={df_resid})"
        )

        return [
            {
                'feature_id': str(fid),
                'p_value': float(p_value[j]),
                'adjusted_p_value': float(adj_p[j]),
                'effect_size': float(estimate[j]),
                'extra': {
                    'ave_log_cpm': float(ave_log_cpm[j]),
                    'se': float(se[j]),
                    't': float(t_value[j]),
                },
            }
            for j, fid in enumerate(counts.index)
        ]


def build_deg_groups(
    matrix: CountMatrix,
    group_col: str,
    sample_col: str,
    condition_col: str,
    contrast: tuple[str, str],
    min_count: float = 10,
    min_group_size: int = 3,
    min_cells: int = 10,
    prior_count: float = 0.5,
) -> list[GroupSpec]:
    """
    One GroupSpec per label of ``group_col`` (e.g. one clustering resolution).

    For every group the cells are pseudobulked per sample, samples with
    fewer than ``min_cells`` cells are dropped, and the expression filter
    decides which genes are tested. The test itself runs when the
    aggregator calls the GroupSpec.

    Raises:
        InputStructureError: If a required metadata column is missing or a
            contrast level never occurs. Raised before any group is tested.
    """
    matrix.require_columns([group_col, sample_col, condition_col])
    conditions = sample_conditions(matrix.cell_metadata, sample_col, condition_col)
    absent = [c for c in contrast if c not in set(conditions.values)]
    if absent:
        raise InputStructureError(
            f"Contrast levels not found in {condition_col!r}: {absent}. "
            f"Available: {sorted(set(conditions.values))}"
        )

    labels = matrix.cell_metadata[group_col].astype(str)
    specs = []
    for group in sorted_labels(matrix.cell_metadata[group_col]):
        sub = matrix.select_cells((labels == group).values)
        counts, n_cells = pseudobulk_aggregate(sub, sample_col)

        small = n_cells[n_cells < min_cells].index
        if len(small):
            logger.info(
                f"{group_col}={group}: dropping {len(small)} sample(s) with < {min_cells} cells"
            )
            counts = counts.drop(columns=small)

        keep = expression_filter(counts, min_count=min_count, min_group_size=min_group_size)
        specs.append(GroupSpec(
            group_id=group,
            results=PseudobulkTest(
                counts=counts.loc[keep.values],
                conditions=conditions,
                contrast=tuple(contrast),
                group_id=group,
                prior_count=prior_count,
            ),
            keep={str(k): bool(v) for k, v in keep.items()},
            min_count=min_count,
            min_group_size=min_group_size,
        ))

    logger.info(f"Prepared {len(specs)} pseudobulk groups for {group_col!r}")
    return specs
