"""
Normalization of raw per-feature test results.

Test oracles (DESeq2-style Wald tests, mixed models, propeller) report
p-values that underflow to exactly 0 for very strong effects. Taking
-log10 of those breaks volcano plots and ranking scores, so zeros are
replaced by a floor before anything downstream takes a logarithm.

The direction score combines sign and strength of an effect:

    direction_score = sign(effect_size) * -log10(p_value)

so that strongly up-regulated features rank at the top, strongly
down-regulated at the bottom, and features with no effect sit at 0.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any, Iterable, Literal

import numpy as np

from pbsummary.core.errors import InvalidInput
from pbsummary.core.results import FeatureResult

logger = logging.getLogger(__name__)

__all__ = ['P_VALUE_FLOOR', 'normalize', 'normalize_record', 'direction_score']

# Smallest p-value kept after flooring; -log10 gives 300.
P_VALUE_FLOOR = 1e-300


def direction_score(effect_size: float, p_value: float) -> float:
    """sign(effect_size) * -log10(p_value), 0 for a zero effect."""
    sign = np.sign(effect_size)
    if sign == 0:
        return 0.0
    return float(sign * -math.log10(p_value))


_MISSING = object()


def _field(record: Any, name: str, feature_id: str = "?") -> Any:
    if isinstance(record, Mapping):
        value = record.get(name, _MISSING)
    else:
        value = getattr(record, name, _MISSING)
    if value is _MISSING:
        raise InvalidInput(feature_id, name, None, reason="field is missing")
    return value


def _as_float(value: Any, feature_id: str, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(feature_id, name, value, reason="not a number") from None


def _check_floor(floor: float) -> None:
    if not (0 < floor < 1):
        raise ValueError(f"floor must be in (0, 1), got {floor}")


def _floored(value: Any, feature_id: str, name: str, floor: float) -> float:
    value = _as_float(value, feature_id, name)
    if value == 0:
        value = floor
    if math.isnan(value) or value < 0 or value > 1:
        raise InvalidInput(feature_id, name, value)
    return value


def normalize_record(record: Any, floor: float = P_VALUE_FLOOR) -> FeatureResult:
    """Normalize one raw record into a FeatureResult.

    Args:
        record: FeatureResult, mapping or object exposing ``feature_id``,
            ``p_value``, ``adjusted_p_value`` and ``effect_size``. An
            optional ``extra`` mapping is carried over.
        floor: Replacement for p-values of exactly 0

    Raises:
        InvalidInput: If a field is missing or not numeric, or a probability
            is negative, NaN or above 1
    """
    _check_floor(floor)
    feature_id = str(_field(record, 'feature_id'))
    p_value = _floored(
        _field(record, 'p_value', feature_id), feature_id, 'p_value', floor
    )
    adjusted = _floored(
        _field(record, 'adjusted_p_value', feature_id), feature_id, 'adjusted_p_value', floor
    )
    # NaN effects are allowed (no direction), None is not
    effect = _as_float(_field(record, 'effect_size', feature_id), feature_id, 'effect_size')

    if isinstance(record, Mapping):
        extra = record.get('extra') or {}
    else:
        extra = getattr(record, 'extra', None) or {}

    return FeatureResult(
        feature_id=feature_id,
        p_value=p_value,
        adjusted_p_value=adjusted,
        effect_size=effect,
        direction_score=direction_score(effect, p_value),
        extra=dict(extra),
    )


def normalize(
    raw_results: Iterable[Any],
    floor: float = P_VALUE_FLOOR,
    errors: Literal["drop", "raise"] = "drop",
) -> list[FeatureResult]:
    """Normalize a sequence of raw per-feature results.

    Zero p-values and adjusted p-values are replaced by ``floor`` and the
    direction score is derived. Inputs are never modified; new frozen
    records are returned in input order. Applying ``normalize`` to its own
    output returns equal records.

    Args:
        raw_results: Records accepted by ``normalize_record``
        floor: Strictly positive replacement for zero p-values
        errors: "drop" logs and skips rows with missing or malformed fields,
            "raise" propagates InvalidInput

    Returns:
        List of FeatureResult

    Example:
        >>> out = normalize([
        ...     {'feature_id': 'g1', 'p_value': 0.0, 'adjusted_p_value': 0.0, 'effect_size': 2.0},
        ... ])
        >>> out[0].p_value, out[0].direction_score
        (1e-300, 300.0)
    """
    if errors not in ("drop", "raise"):
        raise ValueError(f"errors must be 'drop' or 'raise', got {errors!r}")
    _check_floor(floor)

    normalized = []
    n_dropped = 0
    for record in raw_results:
        try:
            normalized.append(normalize_record(record, floor=floor))
        except InvalidInput as e:
            if errors == "raise":
                raise
            n_dropped += 1
            logger.warning(f"Dropping feature: {e}")

    if n_dropped:
        logger.info(f"Dropped {n_dropped} feature(s) with missing or malformed fields")
    return normalized
