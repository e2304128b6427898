"""
Result records shared by the normalizer, classifier and aggregator.

FeatureResult holds one tested feature (gene, cluster or model coefficient)
after normalization. GroupSummary holds one row of the per-group summary
table, one per tested group in the order groups were supplied.

Column naming for significance tiers follows the published summary tables:

    padj_0_05, padj_0_05_up, padj_0_05_down     adjusted p-value tiers
    pvalue_0_05, pvalue_0_05_up, pvalue_0_05_down   raw p-value tier

Examples:
    >>> r = FeatureResult("g1", 1e-300, 1e-300, 2.0, 300.0)
    >>> r.to_dict()['direction_score']
    300.0
    >>> tier_column("padj", 0.05)
    'padj_0_05'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import pandas as pd

from pbsummary.core.errors import InputStructureError

__all__ = [
    'FeatureResult',
    'FitStatus',
    'TierCounts',
    'GroupSummary',
    'tier_column',
    'results_from_frame',
    'results_to_frame',
]


class FitStatus(Enum):
    """Outcome of processing one group."""

    OK = "ok"
    DEGENERATE = "degenerate"   # oracle reported a singular/unreliable fit
    FAILED = "failed"           # oracle raised an unexpected error


@dataclass(frozen=True)
class FeatureResult:
    """Normalized per-feature test result.

    Attributes:
        feature_id: Identifier unique within one test run
        p_value: Raw p-value in (0, 1]
        adjusted_p_value: Multiple-testing adjusted p-value in (0, 1]
        effect_size: Signed effect (log2 fold change or model coefficient)
        direction_score: sign(effect_size) * -log10(p_value)
        extra: Oracle-specific columns (base mean, standard error, ...)
    """

    feature_id: str
    p_value: float
    adjusted_p_value: float
    effect_size: float
    direction_score: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        row = {
            'feature_id': self.feature_id,
            'p_value': self.p_value,
            'adjusted_p_value': self.adjusted_p_value,
            'effect_size': self.effect_size,
            'direction_score': self.direction_score,
        }
        for key, value in self.extra.items():
            row.setdefault(key, value)
        return row


@dataclass(frozen=True)
class TierCounts:
    """Number of features below one threshold, split by effect direction."""

    count: int = 0
    up: int = 0
    down: int = 0


def tier_column(basis: str, threshold: float) -> str:
    """Column stem for a significance tier, e.g. ``padj_0_05``."""
    return f"{basis}_{threshold:g}".replace(".", "_").replace("-", "m")


@dataclass
class GroupSummary:
    """One row of a cross-group summary table.

    Count and statistic fields are None when the group's test failed or
    reported a degenerate fit; ``status`` and ``message`` say which.
    """

    group_id: str
    status: FitStatus = FitStatus.OK
    message: str | None = None
    total_features: int | None = None
    included_features: int | None = None
    excluded_features: int | None = None
    adjusted_tiers: dict[float, TierCounts] | None = None
    pvalue_tiers: dict[float, TierCounts] | None = None
    mean_value: float | None = None
    sd: float | None = None
    median: float | None = None
    iqr: float | None = None
    primary_p_value: float | None = None
    min_count: float | None = None
    min_group_size: int | None = None

    @property
    def failed(self) -> bool:
        return self.status is not FitStatus.OK

    def tier_counts(self, threshold: float, basis: str = "padj") -> TierCounts | None:
        tiers = self.adjusted_tiers if basis == "padj" else self.pvalue_tiers
        if tiers is None:
            return None
        return tiers.get(threshold)

    def to_dict(
        self,
        thresholds: Sequence[float] = (),
        pvalue_thresholds: Sequence[float] = (),
    ) -> dict[str, Any]:
        """Flatten into a table row.

        Threshold columns are emitted for every requested threshold so that
        failed groups carry the same columns (as missing values) as
        successful ones.
        """
        row: dict[str, Any] = {
            'group_id': self.group_id,
            'status': self.status.value,
            'total_features': self.total_features,
            'included_features': self.included_features,
            'excluded_features': self.excluded_features,
        }
        for basis, tiers, levels in (
            ("padj", self.adjusted_tiers, thresholds),
            ("pvalue", self.pvalue_tiers, pvalue_thresholds),
        ):
            for t in levels:
                stem = tier_column(basis, t)
                counts = tiers.get(t) if tiers is not None else None
                row[stem] = counts.count if counts is not None else None
                row[f"{stem}_up"] = counts.up if counts is not None else None
                row[f"{stem}_down"] = counts.down if counts is not None else None
        row.update({
            'mean_value': self.mean_value,
            'sd': self.sd,
            'median': self.median,
            'iqr': self.iqr,
            'primary_p_value': self.primary_p_value,
            'min_count': self.min_count,
            'min_group_size': self.min_group_size,
            'message': self.message,
        })
        return row


def results_from_frame(
    df: pd.DataFrame,
    id_col: str | None = None,
    p_col: str = "pvalue",
    padj_col: str = "padj",
    effect_col: str = "log2FoldChange",
) -> list[dict[str, Any]]:
    """Convert a result table (e.g. DESeq2 output) into raw records.

    The returned dicts are suitable input for ``normalize``. Columns other
    than the four core fields are carried along as extras.

    Args:
        df: One row per feature
        id_col: Column holding feature ids; the index is used when None
        p_col, padj_col, effect_col: Column names of the core statistics

    Raises:
        InputStructureError: If a core column is absent
    """
    missing = [c for c in (p_col, padj_col, effect_col) if c not in df.columns]
    if id_col is not None and id_col not in df.columns:
        missing.append(id_col)
    if missing:
        raise InputStructureError(f"Result table is missing required columns: {missing}")

    ids = df[id_col] if id_col is not None else df.index.to_series()
    core = {p_col, padj_col, effect_col, id_col}
    extra_cols = [c for c in df.columns if c not in core]

    records = []
    for i, (fid, p, padj, eff) in enumerate(
        zip(ids.astype(str), df[p_col], df[padj_col], df[effect_col])
    ):
        extra = {c: df[c].iloc[i] for c in extra_cols}
        records.append({
            'feature_id': fid,
            'p_value': float(p),
            'adjusted_p_value': float(padj),
            'effect_size': float(eff),
            'extra': extra,
        })
    return records


def results_to_frame(results: Sequence[FeatureResult]) -> pd.DataFrame:
    """One row per FeatureResult, core columns first."""
    columns = ['feature_id', 'p_value', 'adjusted_p_value', 'effect_size', 'direction_score']
    if not results:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame([r.to_dict() for r in results])
    ordered = columns + [c for c in df.columns if c not in columns]
    return df[ordered]
