"""
Statistical summarization of per-group test results.

Exports:
- normalize: floor zero p-values and derive direction scores
- classify: count features below significance thresholds, up and down
- aggregate: run one test per group and assemble the summary table
- fdr_correction: multiple testing correction
- Bundled test oracles: pseudobulk DE, propeller, per-cluster mixed model
"""

from .normalize import P_VALUE_FLOOR, direction_score, normalize, normalize_record
from .thresholds import DEFAULT_THRESHOLDS, classify, validate_thresholds
from .aggregator import AggregationResult, GroupSpec, TestOutput, aggregate, summarize_values
from .multitest import fdr_correction
from .pseudobulk import (
    PseudobulkTest,
    build_deg_groups,
    expression_filter,
    pseudobulk_aggregate,
)
from .abundance import (
    MixedAbundanceTest,
    build_mixed_groups,
    build_propeller_groups,
    cell_count_table,
    propeller,
)

__all__ = [
    "P_VALUE_FLOOR",
    "direction_score",
    "normalize",
    "normalize_record",
    "DEFAULT_THRESHOLDS",
    "classify",
    "validate_thresholds",
    "AggregationResult",
    "GroupSpec",
    "TestOutput",
    "aggregate",
    "summarize_values",
    "fdr_correction",
    "PseudobulkTest",
    "build_deg_groups",
    "expression_filter",
    "pseudobulk_aggregate",
    "MixedAbundanceTest",
    "build_mixed_groups",
    "build_propeller_groups",
    "cell_count_table",
    "propeller",
]
