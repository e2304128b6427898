"""
Tests for significance tier counting.
"""

from __future__ import annotations

import numpy as np
import pytest

from pbsummary.core.results import FeatureResult, TierCounts
from pbsummary.stats.normalize import normalize
from pbsummary.stats.thresholds import DEFAULT_THRESHOLDS, classify, validate_thresholds


def _result(fid, padj, effect, p=None):
    p = padj if p is None else p
    return FeatureResult(fid, p, padj, effect)


class TestClassify:

    def test_cluster_example(self):
        results = normalize([
            {'feature_id': 'g1', 'p_value': 0, 'adjusted_p_value': 0, 'effect_size': 2.0},
            {'feature_id': 'g2', 'p_value': 0.2, 'adjusted_p_value': 0.3, 'effect_size': -0.5},
        ])
        tiers = classify(results, [0.01, 0.05, 0.1])
        assert tiers[0.05] == TierCounts(count=1, up=1, down=0)
        assert tiers[0.01] == TierCounts(count=1, up=1, down=0)

    def test_thresholds_independent(self):
        results = [_result('a', 0.001, 1.0), _result('b', 0.03, -1.0), _result('c', 0.08, 1.0)]
        tiers = classify(results, [0.01, 0.05, 0.1])
        assert tiers[0.01] == TierCounts(1, 1, 0)
        assert tiers[0.05] == TierCounts(2, 1, 1)
        assert tiers[0.1] == TierCounts(3, 2, 1)

    def test_strict_inequality(self):
        tiers = classify([_result('a', 0.05, 1.0)], [0.05])
        assert tiers[0.05] == TierCounts(0, 0, 0)

    def test_zero_effect_counts_toward_total_only(self):
        tiers = classify([_result('a', 0.001, 0.0), _result('b', 0.001, 2.0)], [0.05])
        assert tiers[0.05] == TierCounts(count=2, up=1, down=0)

    def test_nan_effect_counts_toward_total_only(self):
        tiers = classify([_result('a', 0.001, float("nan"))], [0.05])
        assert tiers[0.05] == TierCounts(count=1, up=0, down=0)

    def test_up_plus_down_equals_count_for_signed_effects(self):
        rng = np.random.RandomState(0)
        results = [
            _result(f"g{i}", rng.uniform(1e-6, 1), rng.choice([-1, 1]) * rng.uniform(0.1, 3))
            for i in range(200)
        ]
        for t, c in classify(results, DEFAULT_THRESHOLDS).items():
            assert c.up + c.down == c.count

    def test_monotone_in_threshold(self):
        rng = np.random.RandomState(1)
        results = [_result(f"g{i}", rng.uniform(1e-6, 1), rng.normal()) for i in range(300)]
        levels = [0.001, 0.01, 0.05, 0.1, 0.25, 0.5]
        tiers = classify(results, levels)
        for lo, hi in zip(levels, levels[1:]):
            assert tiers[lo].count <= tiers[hi].count
            assert tiers[lo].up <= tiers[hi].up
            assert tiers[lo].down <= tiers[hi].down

    def test_empty_results(self):
        assert classify([], [0.05, 0.1]) == {0.05: TierCounts(), 0.1: TierCounts()}

    def test_raw_pvalue_basis(self):
        results = [_result('a', padj=0.2, effect=1.0, p=0.01)]
        assert classify(results, [0.05])[0.05].count == 0
        assert classify(results, [0.05], basis="p_value")[0.05].count == 1

    def test_unknown_basis(self):
        with pytest.raises(ValueError):
            classify([], [0.05], basis="qvalue")

    def test_pure(self):
        results = [_result('a', 0.001, 1.0), _result('b', 0.2, -1.0)]
        assert classify(results, [0.05]) == classify(results, [0.05])


class TestValidateThresholds:

    @pytest.mark.parametrize("bad", [0, 1, -0.05, 1.5])
    def test_out_of_range(self, bad):
        with pytest.raises(ValueError):
            validate_thresholds([0.05, bad])

    def test_duplicates_dropped_in_order(self):
        assert validate_thresholds([0.1, 0.05, 0.1]) == (0.1, 0.05)
