"""
Significance tier counting.

Each threshold is evaluated independently: a feature with an adjusted
p-value of 0.001 counts toward the 0.01, 0.05 and 0.1 tiers alike. Within a
tier features are sub-counted by the sign of their effect. Features whose
effect is exactly zero (or missing) count toward the tier total only.
"""

from __future__ import annotations

from typing import Literal, Sequence

import numpy as np

from pbsummary.core.results import FeatureResult, TierCounts

__all__ = ['DEFAULT_THRESHOLDS', 'classify', 'validate_thresholds']

DEFAULT_THRESHOLDS = (0.01, 0.05, 0.1)

Basis = Literal["adjusted_p_value", "p_value"]


def validate_thresholds(thresholds: Sequence[float]) -> tuple[float, ...]:
    """Check thresholds lie in (0, 1) and drop duplicates, keeping order."""
    seen: list[float] = []
    for t in thresholds:
        t = float(t)
        if not (0 < t < 1):
            raise ValueError(f"Significance threshold must be in (0, 1), got {t}")
        if t not in seen:
            seen.append(t)
    return tuple(seen)


def classify(
    results: Sequence[FeatureResult],
    thresholds: Sequence[float],
    basis: Basis = "adjusted_p_value",
) -> dict[float, TierCounts]:
    """Count features below each threshold, split into up and down.

    Args:
        results: Normalized feature results
        thresholds: Significance levels in (0, 1)
        basis: Which probability to compare, adjusted (default) or raw

    Returns:
        Dict threshold -> TierCounts, in threshold order

    Example:
        >>> from pbsummary.core.results import FeatureResult
        >>> rs = [FeatureResult("g1", 1e-300, 1e-300, 2.0, 300.0),
        ...       FeatureResult("g2", 0.2, 0.3, -0.5, -0.7)]
        >>> classify(rs, [0.05])[0.05]
        TierCounts(count=1, up=1, down=0)
    """
    if basis not in ("adjusted_p_value", "p_value"):
        raise ValueError(f"Unknown basis: {basis!r}")
    levels = validate_thresholds(thresholds)

    if not results:
        return {t: TierCounts() for t in levels}

    probs = np.array([getattr(r, basis) for r in results], dtype=float)
    effects = np.array([r.effect_size for r in results], dtype=float)
    up = effects > 0
    down = effects < 0

    counts = {}
    for t in levels:
        below = probs < t
        counts[t] = TierCounts(
            count=int(below.sum()),
            up=int((below & up).sum()),
            down=int((below & down).sum()),
        )
    return counts
