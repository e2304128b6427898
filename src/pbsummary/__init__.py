"""
pbsummary - Summary tables for single-cell knockout screens

Pseudobulk differential expression and differential abundance results are
normalized, counted against significance thresholds and collected into one
summary row per cluster, so that clustering resolutions and knockouts can be
compared side by side.
"""

__version__ = "0.1.0"

from pbsummary.core.errors import DegenerateFit, InputStructureError, InvalidInput
from pbsummary.core.matrix import CountMatrix
from pbsummary.core.names import NameMapping, map_names
from pbsummary.core.results import FeatureResult, GroupSummary
from pbsummary.stats.aggregator import GroupSpec, aggregate
from pbsummary.stats.normalize import normalize
from pbsummary.stats.thresholds import classify

__all__ = [
    "CountMatrix",
    "DegenerateFit",
    "FeatureResult",
    "GroupSpec",
    "GroupSummary",
    "InputStructureError",
    "InvalidInput",
    "NameMapping",
    "aggregate",
    "classify",
    "map_names",
    "normalize",
]
