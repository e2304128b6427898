"""
Multiple testing correction shared by the bundled test oracles.
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import NDArray
from statsmodels.stats.multitest import multipletests

__all__ = ['fdr_correction']


def fdr_correction(
    pvalues: NDArray[np.float64],
    method: Literal["BH", "BY", "bonferroni", "holm"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Apply multiple testing correction.

    Args:
        pvalues: Array of raw p-values. NaN entries are left as NaN and do
            not count toward the number of tests.
        method: Correction method:
            - "BH": Benjamini-Hochberg (controls FDR)
            - "BY": Benjamini-Yekutieli (controls FDR under dependence)
            - "bonferroni": Bonferroni (controls FWER)
            - "holm": Holm step-down (controls FWER)
        alpha: Significance threshold.

    Returns:
        Array of adjusted p-values.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    method_map = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni", "holm": "holm"}
    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=method_map.get(method, method),
    )

    return adj_pvals
