"""
Differential abundance of cell populations between conditions.

Two complementary tests of whether knockout changes the share of cells in
each cluster:

1. propeller (Phipson et al. 2022): per-sample cluster proportions are
   variance-stabilized (logit or arcsine square root) and compared between
   conditions with a t-test (two conditions) or one-way ANOVA (more), with
   Benjamini-Hochberg correction across clusters.

2. Mixed model per cluster:
       transformed_proportion ~ condition + (1 | batch)
   where batch is e.g. the hashtag pool or 10x lane. Fits whose random
   effect variance collapses to zero (singular) or that do not converge
   are reported as degenerate rather than trusted.

Both produce raw per-feature records for the aggregator: for propeller the
features are clusters (one group per knockout-vs-control contrast), for the
mixed model the features are condition coefficients (one group per
cluster).

References:
    - Phipson et al. (2022) propeller: Bioinformatics 38(20):4720-4726
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Literal, Sequence

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from pbsummary.core.errors import DegenerateFit, InputStructureError
from pbsummary.stats.aggregator import GroupSpec, TestOutput
from pbsummary.stats.multitest import fdr_correction
from pbsummary.stats.pseudobulk import sample_annotations, sorted_labels

logger = logging.getLogger(__name__)

__all__ = [
    'cell_count_table',
    'cluster_proportions',
    'transform_proportions',
    'propeller',
    'propeller_records',
    'PropellerContrast',
    'build_propeller_groups',
    'MixedAbundanceTest',
    'build_mixed_groups',
]

Transform = Literal["logit", "asin"]


def _require(cell_meta: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in cell_meta.columns]
    if missing:
        raise InputStructureError(
            f"Cell metadata is missing required columns: {missing}. "
            f"Available: {list(cell_meta.columns)}"
        )


def cell_count_table(
    cell_meta: pd.DataFrame,
    row_col: str,
    col_col: str,
) -> pd.DataFrame:
    """
    Cross-tabulate cells, e.g. samples × clusters or hashtag × call.

    Cells missing either label are not counted. Labels are ordered with
    numeric labels in numeric order.
    """
    _require(cell_meta, [row_col, col_col])
    labels = cell_meta[[row_col, col_col]].dropna().astype(str)
    table = pd.crosstab(labels[row_col], labels[col_col])
    return table.reindex(
        index=sorted_labels(labels[row_col]),
        columns=sorted_labels(labels[col_col]),
        fill_value=0,
    )


def cluster_proportions(counts: pd.DataFrame) -> pd.DataFrame:
    """Row-normalize a samples × clusters count table."""
    totals = counts.sum(axis=1)
    if (totals <= 0).any():
        raise InputStructureError(f"Samples without cells: {totals[totals <= 0].index.tolist()}")
    return counts.div(totals, axis=0)


def transform_proportions(counts: pd.DataFrame, transform: Transform = "logit") -> pd.DataFrame:
    """
    Variance-stabilize cluster proportions.

    logit uses (count + 0.5) / (total + 1) so that empty clusters stay
    finite; asin is arcsin(sqrt(proportion)).
    """
    if transform == "logit":
        totals = counts.sum(axis=1)
        pseudo = (counts + 0.5).div(totals + 1, axis=0)
        return np.log(pseudo / (1 - pseudo))
    if transform == "asin":
        return np.arcsin(np.sqrt(cluster_proportions(counts)))
    raise ValueError(f"Unknown transform: {transform!r} (use 'logit' or 'asin')")


def propeller(
    cell_meta: pd.DataFrame,
    cluster_col: str,
    sample_col: str,
    condition_col: str,
    transform: Transform = "logit",
    conditions: Sequence[str] | None = None,
    fdr_method: str = "BH",
) -> pd.DataFrame:
    """
    Test for differences in cluster proportions between conditions.

    Args:
        cell_meta: One row per cell
        cluster_col: Cluster label column
        sample_col: Biological replicate column (e.g. hashtag sample)
        condition_col: Condition column (e.g. knockout)
        transform: "logit" or "asin"
        conditions: Conditions to compare, in order. With two conditions
            ``(test, reference)`` the proportion ratio is test / reference.
            Defaults to all conditions present.
        fdr_method: Correction across clusters

    Returns:
        DataFrame indexed by cluster with columns ``baseline_prop``,
        ``prop_<condition>`` per condition, ``prop_ratio`` (two conditions
        only), ``statistic``, ``p_value`` and ``fdr``.

    Raises:
        InputStructureError: Missing columns, fewer than two conditions or
            fewer than two samples in a condition.
    """
    _require(cell_meta, [cluster_col, sample_col, condition_col])
    sample_cond = sample_annotations(cell_meta, sample_col, [condition_col])[condition_col]

    if conditions is None:
        conditions = sorted_labels(sample_cond)
    conditions = [str(c) for c in conditions]
    if len(conditions) < 2:
        raise InputStructureError(f"Need at least 2 conditions, got {conditions}")

    n_per_condition = sample_cond.value_counts().reindex(conditions, fill_value=0)
    too_few = n_per_condition[n_per_condition < 2]
    if len(too_few):
        raise InputStructureError(
            f"Need at least 2 samples per condition: {too_few.to_dict()}"
        )

    samples = sample_cond[sample_cond.isin(conditions)].index
    counts = cell_count_table(cell_meta, sample_col, cluster_col).reindex(samples)
    props = cluster_proportions(counts)
    transformed = transform_proportions(counts, transform)
    groups = sample_cond.reindex(samples)

    out = pd.DataFrame(index=counts.columns)
    out.index.name = cluster_col
    out['baseline_prop'] = counts.sum(axis=0) / counts.values.sum()
    for cond in conditions:
        out[f'prop_{cond}'] = props[groups == cond].mean(axis=0)

    by_condition = [transformed[groups == cond] for cond in conditions]
    if len(conditions) == 2:
        stat, pvals = scipy_stats.ttest_ind(by_condition[0], by_condition[1], equal_var=True)
        with np.errstate(divide="ignore", invalid="ignore"):
            out['prop_ratio'] = out[f'prop_{conditions[0]}'] / out[f'prop_{conditions[1]}']
    else:
        stat, pvals = scipy_stats.f_oneway(*by_condition)

    out['statistic'] = np.asarray(stat, dtype=float)
    # Clusters with zero variance in every condition give NaN statistics.
    out['p_value'] = np.asarray(pvals, dtype=float)
    out['fdr'] = fdr_correction(out['p_value'].to_numpy(), method=fdr_method)
    return out


def propeller_records(table: pd.DataFrame) -> list[dict[str, Any]]:
    """Raw records (one per cluster) from a propeller result table.

    The effect size is log2 of the proportion ratio; tables from more than
    two conditions have no ratio and get a NaN effect.
    """
    records = []
    for cluster, row in table.iterrows():
        if 'prop_ratio' in table.columns:
            with np.errstate(divide="ignore"):
                effect = float(np.log2(row['prop_ratio']))
        else:
            effect = float("nan")
        extra = {
            c: row[c] for c in table.columns
            if c not in ('p_value', 'fdr')
        }
        records.append({
            'feature_id': str(cluster),
            'p_value': row['p_value'],
            'adjusted_p_value': row['fdr'],
            'effect_size': effect,
            'extra': extra,
        })
    return records


@dataclass
class PropellerContrast:
    """Test oracle: propeller for one ``test`` vs ``reference`` contrast."""

    cell_meta: pd.DataFrame
    cluster_col: str
    sample_col: str
    condition_col: str
    test: str
    reference: str
    transform: Transform = "logit"

    def __call__(self) -> list[dict[str, Any]]:
        conditions = self.cell_meta[self.condition_col].astype(str)
        subset = self.cell_meta[conditions.isin([self.test, self.reference]).values]
        table = propeller(
            subset,
            cluster_col=self.cluster_col,
            sample_col=self.sample_col,
            condition_col=self.condition_col,
            transform=self.transform,
            conditions=[self.test, self.reference],
        )
        return propeller_records(table)


def _check_control(cell_meta: pd.DataFrame, condition_col: str, control: str) -> list[str]:
    present = sorted_labels(cell_meta[condition_col])
    if str(control) not in present:
        raise InputStructureError(
            f"Control {control!r} not found in {condition_col!r}. Available: {present}"
        )
    return present


def build_propeller_groups(
    cell_meta: pd.DataFrame,
    cluster_col: str,
    sample_col: str,
    condition_col: str,
    control: str,
    transform: Transform = "logit",
) -> list[GroupSpec]:
    """
    One GroupSpec per ``<knockout>_vs_<control>`` contrast, clusters as features.

    Raises:
        InputStructureError: Missing columns or control not present.
    """
    _require(cell_meta, [cluster_col, sample_col, condition_col])
    present = _check_control(cell_meta, condition_col, control)
    control = str(control)

    return [
        GroupSpec(
            group_id=f"{cond}_vs_{control}",
            results=PropellerContrast(
                cell_meta=cell_meta,
                cluster_col=cluster_col,
                sample_col=sample_col,
                condition_col=condition_col,
                test=cond,
                reference=control,
                transform=transform,
            ),
        )
        for cond in present
        if cond != control
    ]


@dataclass
class MixedAbundanceTest:
    """
    Test oracle: mixed model of one cluster's proportion across samples.

    Attributes:
        samples: One row per sample with ``condition`` and ``batch``
            columns, indexed by sample
        counts: Samples × clusters cell counts
        cluster: Cluster to test
        control: Reference condition
        transform: Proportion transform
        singular_tol: Random effect variance at or below which the fit is
            considered singular

    Returns (on call):
        TestOutput whose features are the ``<condition>_vs_<control>``
        coefficients, primary p-value from the joint Wald test of all
        condition coefficients, and the per-sample cluster proportions as
        summary values.

    Raises (on call):
        DegenerateFit: Fewer than two batches, non-convergence, a
            convergence warning, a singular random effect or a singular
            information matrix.
    """

    samples: pd.DataFrame
    counts: pd.DataFrame
    cluster: str
    control: str
    transform: Transform = "logit"
    singular_tol: float = 1e-8

    def _frame(self) -> pd.DataFrame:
        counts = self.counts.reindex(self.samples.index)
        values = transform_proportions(counts, self.transform)[self.cluster]
        levels = [self.control] + sorted(
            c for c in self.samples['condition'].unique() if c != self.control
        )
        return pd.DataFrame({
            'value': values.values,
            'proportion': cluster_proportions(counts)[self.cluster].values,
            'condition': pd.Categorical(self.samples['condition'].values, categories=levels),
            'batch': self.samples['batch'].values,
        }, index=self.samples.index)

    def __call__(self) -> TestOutput:
        import statsmodels.formula.api as smf
        from statsmodels.tools.sm_exceptions import ConvergenceWarning

        df = self._frame()
        if df['batch'].nunique() < 2:
            raise DegenerateFit(self.cluster, "random effect needs at least 2 batches")
        if df['condition'].nunique() < 2:
            raise DegenerateFit(self.cluster, "only one condition present")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            try:
                model = smf.mixedlm("value ~ condition", df, groups=df["batch"])
                result = model.fit(reml=True, method='powell')
            except np.linalg.LinAlgError as e:
                raise DegenerateFit(self.cluster, f"singular matrix: {e}") from e

        convergence = [w for w in caught if issubclass(w.category, ConvergenceWarning)]
        if not result.converged:
            raise DegenerateFit(self.cluster, "mixed model did not converge")
        if convergence:
            raise DegenerateFit(self.cluster, str(convergence[0].message))

        batch_var = float(result.cov_re.iloc[0, 0])
        if not np.isfinite(batch_var) or batch_var <= self.singular_tol:
            raise DegenerateFit(
                self.cluster, f"singular fit (batch variance {batch_var:.3g})"
            )

        names = [n for n in result.fe_params.index if n.startswith("condition")]
        coef = result.fe_params[names].to_numpy()
        pvals = result.pvalues[names].to_numpy()
        if not np.all(np.isfinite(pvals)):
            raise DegenerateFit(self.cluster, "non-finite coefficient p-values")

        n_fixed = len(result.fe_params)
        cov = result.cov_params().iloc[:n_fixed, :n_fixed].loc[names, names].to_numpy()
        try:
            wald = float(coef @ np.linalg.solve(cov, coef))
        except np.linalg.LinAlgError as e:
            raise DegenerateFit(self.cluster, f"singular covariance: {e}") from e
        joint_p = float(scipy_stats.chi2.sf(wald, len(names)))

        se = np.sqrt(np.diag(cov))
        adj = fdr_correction(pvals)
        records = []
        for name, b, s, p, q in zip(names, coef, se, pvals, adj):
            level = name.split("[T.", 1)[-1].rstrip("]")
            records.append({
                'feature_id': f"{level}_vs_{self.control}",
                'p_value': float(p),
                'adjusted_p_value': float(q),
                'effect_size': float(b),
                'extra': {
                    'se': float(s),
                    'batch_var': batch_var,
                },
            })

        return TestOutput(
            results=records,
            primary_p_value=joint_p,
            summary_values=df['proportion'].tolist(),
        )


def build_mixed_groups(
    cell_meta: pd.DataFrame,
    cluster_col: str,
    sample_col: str,
    condition_col: str,
    batch_col: str,
    control: str,
    transform: Transform = "logit",
) -> list[GroupSpec]:
    """
    One GroupSpec per cluster for the mixed-model abundance test.

    Raises:
        InputStructureError: Missing columns, control not present or a
            sample assigned to more than one condition/batch.
    """
    _require(cell_meta, [cluster_col, sample_col, condition_col, batch_col])
    _check_control(cell_meta, condition_col, control)

    samples = sample_annotations(cell_meta, sample_col, [condition_col, batch_col])
    samples = samples.rename(columns={condition_col: 'condition', batch_col: 'batch'})
    counts = cell_count_table(cell_meta, sample_col, cluster_col)
    samples = samples.reindex(counts.index).dropna()

    return [
        GroupSpec(
            group_id=cluster,
            results=MixedAbundanceTest(
                samples=samples,
                counts=counts,
                cluster=cluster,
                control=str(control),
                transform=transform,
            ),
        )
        for cluster in counts.columns
    ]
