"""
Cross-group summarization of per-feature test results.

The same statistical test is typically run once per cluster (and once per
clustering resolution). This module turns each group's raw per-feature
output into one GroupSummary row:

    raw results -> inclusion filter -> normalize -> classify -> summary row

Groups are independent. A test that raises for one group never stops the
others: ``DegenerateFit`` marks the row degenerate, any other exception
marks it failed, and in both cases the derived fields are left missing.
Every group is attempted exactly once and rows come back in the order the
groups were given, also when groups run on a thread pool.

Examples:
    >>> from pbsummary.stats.aggregator import GroupSpec, aggregate
    >>> result = aggregate(
    ...     [GroupSpec("ClusterA", [
    ...         {'feature_id': 'g1', 'p_value': 0, 'adjusted_p_value': 0, 'effect_size': 2.0},
    ...         {'feature_id': 'g2', 'p_value': 0.2, 'adjusted_p_value': 0.3, 'effect_size': -0.5},
    ...     ])],
    ...     thresholds=[0.01, 0.05],
    ... )
    >>> result.rows[0].tier_counts(0.05)
    TierCounts(count=1, up=1, down=0)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Sequence, Union

import numpy as np
import pandas as pd

from pbsummary.core.errors import DegenerateFit, InputStructureError
from pbsummary.core.results import FeatureResult, FitStatus, GroupSummary, TierCounts
from pbsummary.stats.normalize import P_VALUE_FLOOR, normalize
from pbsummary.stats.thresholds import DEFAULT_THRESHOLDS, classify, validate_thresholds

logger = logging.getLogger(__name__)

__all__ = [
    'GroupSpec',
    'TestOutput',
    'AggregationResult',
    'aggregate',
    'summarize_values',
]


@dataclass(frozen=True)
class TestOutput:
    """Optional richer return value of a test oracle.

    Attributes:
        results: Raw per-feature records
        primary_p_value: P-value of the group's primary test (e.g. the
            likelihood ratio test of a mixed model). When None the smallest
            adjusted p-value among included features is used.
        summary_values: Values to describe with mean/sd/median/iqr instead
            of the per-feature ``summary_field``
    """

    __test__ = False

    results: Sequence[Any]
    primary_p_value: float | None = None
    summary_values: Sequence[float] | None = None


RawResults = Union[Sequence[Any], TestOutput]


@dataclass(frozen=True)
class GroupSpec:
    """One group to test and summarize.

    Attributes:
        group_id: Unique label of the group (cluster, contrast, ...)
        results: Raw per-feature records, or a zero-argument callable that
            runs the test oracle and returns them (or a TestOutput)
        keep: Inclusion mask, feature id -> bool, computed by the caller
            (e.g. ``expression_filter``). Features absent from the mask or
            mapped to False are excluded. None keeps everything.
        min_count: Count threshold the mask was built with (provenance)
        min_group_size: Sample threshold the mask was built with (provenance)
        summary_values: Values for mean/sd/median/iqr; overrides the oracle
    """

    group_id: str
    results: RawResults | Callable[[], RawResults]
    keep: Mapping[str, bool] | None = None
    min_count: float | None = None
    min_group_size: int | None = None
    summary_values: Sequence[float] | None = None

    @classmethod
    def coerce(cls, spec: Any) -> "GroupSpec":
        """Accept GroupSpec or a ``(group_id, results[, min_count[, min_group_size]])`` tuple."""
        if isinstance(spec, GroupSpec):
            return spec
        group_id, results, *rest = spec
        min_count = rest[0] if len(rest) > 0 else None
        min_group_size = rest[1] if len(rest) > 1 else None
        return cls(str(group_id), results, min_count=min_count, min_group_size=min_group_size)


def summarize_values(values: Sequence[float] | None) -> dict[str, float | None]:
    """mean, sd (n-1), median and IQR ignoring missing values."""
    empty = {'mean_value': None, 'sd': None, 'median': None, 'iqr': None}
    if values is None:
        return empty
    arr = np.asarray(list(values), dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return empty
    q1, q3 = np.percentile(arr, [25, 75])
    return {
        'mean_value': float(arr.mean()),
        'sd': float(arr.std(ddof=1)) if arr.size > 1 else None,
        'median': float(np.median(arr)),
        'iqr': float(q3 - q1),
    }


def _feature_id(record: Any) -> str | None:
    if isinstance(record, Mapping):
        value = record.get("feature_id")
    else:
        value = getattr(record, "feature_id", None)
    return None if value is None else str(value)


def _set_stats(row: GroupSummary, values: Sequence[float] | None) -> None:
    for key, value in summarize_values(values).items():
        setattr(row, key, value)


def _field_values(results: Sequence[FeatureResult], name: str) -> list[float]:
    values = []
    for r in results:
        if hasattr(r, name):
            values.append(getattr(r, name))
        else:
            values.append(r.extra.get(name, np.nan))
    return values


@dataclass
class AggregationResult:
    """Summary rows for all groups, in input order.

    Attributes:
        rows: One GroupSummary per input group
        details: Normalized included FeatureResults per group id
            (empty list for failed groups)
        thresholds: Adjusted p-value thresholds used for the tiers
        pvalue_thresholds: Raw p-value thresholds (zero or one entry)
        significance_threshold: Default cut-off for ``significant()``
    """

    rows: list[GroupSummary]
    details: dict[str, list[FeatureResult]]
    thresholds: tuple[float, ...]
    pvalue_thresholds: tuple[float, ...] = ()
    significance_threshold: float = 0.05

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[GroupSummary]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> GroupSummary:
        return self.rows[index]

    @property
    def failed_groups(self) -> list[GroupSummary]:
        """Rows whose test failed or reported a degenerate fit."""
        return [row for row in self.rows if row.failed]

    def significant(self, threshold: float | None = None) -> list[GroupSummary]:
        """Rows whose primary p-value is below ``threshold``."""
        if threshold is None:
            threshold = self.significance_threshold
        return [
            row for row in self.rows
            if not row.failed
            and row.primary_p_value is not None
            and row.primary_p_value < threshold
        ]

    def _frame(self, rows: Sequence[GroupSummary]) -> pd.DataFrame:
        records = [r.to_dict(self.thresholds, self.pvalue_thresholds) for r in rows]
        if records:
            return pd.DataFrame(records)
        columns = list(GroupSummary("").to_dict(self.thresholds, self.pvalue_thresholds))
        return pd.DataFrame(columns=columns)

    def to_dataframe(self) -> pd.DataFrame:
        return self._frame(self.rows)

    def significant_dataframe(self, threshold: float | None = None) -> pd.DataFrame:
        return self._frame(self.significant(threshold))

    def failed_dataframe(self) -> pd.DataFrame:
        rows = [
            {'group_id': r.group_id, 'status': r.status.value, 'message': r.message}
            for r in self.failed_groups
        ]
        return pd.DataFrame(rows, columns=['group_id', 'status', 'message'])


def _summarize_output(
    row: GroupSummary,
    spec: GroupSpec,
    output: RawResults,
    thresholds: tuple[float, ...],
    pvalue_thresholds: tuple[float, ...],
    floor: float,
    summary_field: str,
) -> list[FeatureResult]:
    primary = None
    summary_values = spec.summary_values
    if isinstance(output, TestOutput):
        primary = output.primary_p_value
        if summary_values is None:
            summary_values = output.summary_values
        raw = list(output.results)
    elif output is None:
        raise TypeError("test returned None instead of per-feature results")
    else:
        raw = list(output)

    if spec.keep is not None:
        raw = [r for r in raw if spec.keep.get(_feature_id(r), False)]
    else:
        row.total_features = len(raw)

    results = normalize(raw, floor=floor)

    # Rows dropped as malformed were not tested
    row.included_features = len(results)
    row.excluded_features = row.total_features - row.included_features
    if len(results) < len(raw):
        logger.warning(
            f"{spec.group_id}: {len(raw) - len(results)} malformed feature(s) excluded"
        )

    row.adjusted_tiers = classify(results, thresholds, basis="adjusted_p_value")
    row.pvalue_tiers = classify(results, pvalue_thresholds, basis="p_value")

    if summary_values is None:
        summary_values = _field_values(results, summary_field)
    _set_stats(row, summary_values)

    if primary is None and results:
        primary = min(r.adjusted_p_value for r in results)
    row.primary_p_value = primary
    return results


def _process_group(
    spec: GroupSpec,
    thresholds: tuple[float, ...],
    pvalue_thresholds: tuple[float, ...],
    floor: float,
    summary_field: str,
) -> tuple[GroupSummary, list[FeatureResult]]:
    row = GroupSummary(
        group_id=spec.group_id,
        min_count=spec.min_count,
        min_group_size=spec.min_group_size,
    )

    if spec.keep is not None:
        row.total_features = len(spec.keep)
        row.included_features = int(sum(bool(v) for v in spec.keep.values()))
        row.excluded_features = row.total_features - row.included_features

        if row.included_features == 0:
            logger.info(f"{spec.group_id}: no features pass the inclusion filter")
            row.adjusted_tiers = {t: TierCounts() for t in thresholds}
            row.pvalue_tiers = {t: TierCounts() for t in pvalue_thresholds}
            _set_stats(row, spec.summary_values)
            return row, []

    mask_counts = (row.total_features, row.included_features, row.excluded_features)
    try:
        output = spec.results() if callable(spec.results) else spec.results
        results = _summarize_output(
            row, spec, output, thresholds, pvalue_thresholds, floor, summary_field
        )
    except DegenerateFit as e:
        logger.warning(f"{spec.group_id}: {e}")
        return _failed_row(row, mask_counts, FitStatus.DEGENERATE, e.reason), []
    except Exception as e:
        logger.warning(f"{spec.group_id}: test failed - {type(e).__name__}: {e}")
        return _failed_row(row, mask_counts, FitStatus.FAILED, f"{type(e).__name__}: {e}"), []

    logger.debug(
        f"{spec.group_id}: {row.included_features}/{row.total_features} features, "
        f"primary p={row.primary_p_value}"
    )
    return row, results


def _failed_row(
    row: GroupSummary,
    mask_counts: tuple[int | None, int | None, int | None],
    status: FitStatus,
    message: str,
) -> GroupSummary:
    """Fresh row for a group whose test or summary could not complete."""
    total, included, excluded = mask_counts
    return GroupSummary(
        group_id=row.group_id,
        status=status,
        message=message,
        total_features=total,
        included_features=included,
        excluded_features=excluded,
        min_count=row.min_count,
        min_group_size=row.min_group_size,
    )


def aggregate(
    groups: Sequence[GroupSpec | tuple],
    thresholds: Sequence[float] = DEFAULT_THRESHOLDS,
    pvalue_threshold: float | None = 0.05,
    floor: float = P_VALUE_FLOOR,
    summary_field: str = "effect_size",
    significance_threshold: float = 0.05,
    n_workers: int = 1,
) -> AggregationResult:
    """
    Run and summarize one test per group.

    Args:
        groups: GroupSpec objects (or ``(group_id, results, min_count,
            min_group_size)`` tuples), in the order rows should appear.
        thresholds: Adjusted p-value thresholds, each in (0, 1).
        pvalue_threshold: Single raw p-value threshold tracked as its own
            tier (``pvalue_*`` columns). None disables it.
        floor: Replacement for p-values of exactly 0.
        summary_field: FeatureResult field (or oracle extra column)
            described by mean/sd/median/iqr.
        significance_threshold: Default cut-off of the significant view.
        n_workers: Number of threads. Groups run concurrently when > 1;
            output order is unaffected.

    Returns:
        AggregationResult with one row per group.

    Raises:
        InputStructureError: If group ids are not unique.
    """
    specs = [GroupSpec.coerce(g) for g in groups]
    ids = [s.group_id for s in specs]
    duplicated = sorted({i for i in ids if ids.count(i) > 1})
    if duplicated:
        raise InputStructureError(f"Duplicate group ids: {duplicated}")

    levels = validate_thresholds(thresholds)
    pvalue_levels = validate_thresholds([pvalue_threshold]) if pvalue_threshold is not None else ()

    logger.info(f"Summarizing {len(specs)} groups (thresholds={list(levels)})")

    outcomes: list[tuple[GroupSummary, list[FeatureResult]] | None] = [None] * len(specs)

    if n_workers > 1 and len(specs) > 1:
        with ThreadPoolExecutor(max_workers=min(n_workers, len(specs))) as executor:
            future_to_index = {
                executor.submit(
                    _process_group, spec, levels, pvalue_levels, floor, summary_field
                ): i
                for i, spec in enumerate(specs)
            }
            for future in as_completed(future_to_index):
                outcomes[future_to_index[future]] = future.result()
    else:
        for i, spec in enumerate(specs):
            outcomes[i] = _process_group(spec, levels, pvalue_levels, floor, summary_field)

    rows = [o[0] for o in outcomes]
    details = {o[0].group_id: o[1] for o in outcomes}

    result = AggregationResult(
        rows=rows,
        details=details,
        thresholds=levels,
        pvalue_thresholds=pvalue_levels,
        significance_threshold=significance_threshold,
    )

    if result.failed_groups:
        logger.warning(
            f"{len(result.failed_groups)}/{len(rows)} groups failed or were degenerate: "
            f"{[r.group_id for r in result.failed_groups]}"
        )
    return result
