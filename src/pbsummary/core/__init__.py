"""
Core records and error types used throughout pbsummary.

1. FeatureResult / GroupSummary: per-feature and per-group result rows
2. NameMapping: id -> display label lookup with pass-through
3. Error taxonomy: InvalidInput, DegenerateFit, InputStructureError
"""

from pbsummary.core.errors import (
    PbSummaryError,
    InvalidInput,
    DegenerateFit,
    InputStructureError,
)
from pbsummary.core.matrix import CountMatrix
from pbsummary.core.names import NameMapping, map_names
from pbsummary.core.results import (
    FeatureResult,
    FitStatus,
    GroupSummary,
    TierCounts,
    results_from_frame,
    results_to_frame,
    tier_column,
)

__all__ = [
    'PbSummaryError',
    'InvalidInput',
    'DegenerateFit',
    'InputStructureError',
    'CountMatrix',
    'NameMapping',
    'map_names',
    'FeatureResult',
    'FitStatus',
    'GroupSummary',
    'TierCounts',
    'results_from_frame',
    'results_to_frame',
    'tier_column',
]
