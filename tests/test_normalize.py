"""
Tests for result record normalization.

Verifies that:
1. p-values of exactly 0 are floored, other values pass through unchanged
2. direction_score = sign(effect) * -log10(p), 0 for a zero effect
3. Malformed probabilities are dropped (default) or raised
4. Inputs are not mutated and normalization is idempotent
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass

import numpy as np
import pandas as pd
import pytest

from pbsummary.core.errors import InvalidInput
from pbsummary.core.results import FeatureResult, results_from_frame
from pbsummary.stats.normalize import (
    P_VALUE_FLOOR,
    direction_score,
    normalize,
    normalize_record,
)


class TestFlooring:

    def test_zero_pvalues_are_floored(self, raw_records):
        out = normalize(raw_records)
        g1 = out[0]
        assert g1.p_value == P_VALUE_FLOOR
        assert g1.adjusted_p_value == P_VALUE_FLOOR
        assert g1.direction_score == pytest.approx(300.0)

    def test_nonzero_pvalues_unchanged(self, raw_records):
        out = normalize(raw_records)
        assert out[1].p_value == 0.2
        assert out[1].adjusted_p_value == 0.3

    def test_custom_floor(self):
        out = normalize(
            [{'feature_id': 'g', 'p_value': 0, 'adjusted_p_value': 0.5, 'effect_size': -1}],
            floor=1e-10,
        )
        assert out[0].p_value == 1e-10
        assert out[0].direction_score == pytest.approx(-10.0)

    @pytest.mark.parametrize("floor", [0, 1, -1e-3, 2])
    def test_invalid_floor(self, floor):
        with pytest.raises(ValueError):
            normalize([], floor=floor)

    def test_never_returns_zero(self, raw_records):
        for r in normalize(raw_records):
            assert r.p_value > 0
            assert r.adjusted_p_value > 0


class TestDirectionScore:

    def test_sign_follows_effect(self):
        assert direction_score(1.5, 0.01) == pytest.approx(2.0)
        assert direction_score(-0.1, 0.01) == pytest.approx(-2.0)

    def test_zero_effect_scores_zero(self):
        assert direction_score(0.0, 1e-20) == 0.0

    def test_pvalue_one_scores_zero_magnitude(self):
        assert abs(direction_score(3.0, 1.0)) == 0.0

    def test_nan_effect_propagates(self):
        assert math.isnan(direction_score(float("nan"), 0.01))


class TestInvalidInput:

    @pytest.mark.parametrize("value", [-0.1, 1.5, float("nan")])
    def test_raise_mode(self, value):
        bad = {'feature_id': 'bad', 'p_value': value, 'adjusted_p_value': 0.5, 'effect_size': 1}
        with pytest.raises(InvalidInput) as exc:
            normalize([bad], errors="raise")
        assert exc.value.feature_id == 'bad'
        assert exc.value.field_name == 'p_value'

    def test_drop_mode_keeps_other_rows(self, raw_records, caplog):
        bad = {'feature_id': 'bad', 'p_value': 0.5, 'adjusted_p_value': 1.2, 'effect_size': 1}
        out = normalize(raw_records + [bad])
        assert [r.feature_id for r in out] == ['g1', 'g2', 'g3', 'g4']
        assert "bad" in caplog.text

    def test_drop_mode_skips_non_numeric_effect(self):
        recs = [
            {'feature_id': 'x', 'p_value': 0.01, 'adjusted_p_value': 0.02, 'effect_size': None},
            {'feature_id': 'y', 'p_value': 0.01, 'adjusted_p_value': 0.02, 'effect_size': 1.0},
        ]
        assert [r.feature_id for r in normalize(recs)] == ['y']

    @pytest.mark.parametrize("missing", ['p_value', 'adjusted_p_value', 'effect_size'])
    def test_missing_field(self, missing):
        rec = {'feature_id': 'x', 'p_value': 0.01, 'adjusted_p_value': 0.02, 'effect_size': 1.0}
        del rec[missing]
        with pytest.raises(InvalidInput) as exc:
            normalize([rec], errors="raise")
        assert exc.value.feature_id == 'x'
        assert exc.value.field_name == missing
        assert "missing" in str(exc.value)
        assert normalize([rec]) == []

    def test_non_numeric_probability(self):
        rec = {'feature_id': 'x', 'p_value': "n/a", 'adjusted_p_value': 0.02, 'effect_size': 1.0}
        with pytest.raises(InvalidInput, match="not a number"):
            normalize_record(rec)

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_record({'feature_id': 'x', 'p_value': -1,
                              'adjusted_p_value': 0.1, 'effect_size': 0})

    def test_unknown_errors_mode(self):
        with pytest.raises(ValueError):
            normalize([], errors="ignore")


class TestPurity:

    def test_input_not_mutated(self, raw_records):
        before = copy.deepcopy(raw_records)
        normalize(raw_records)
        assert raw_records == before

    def test_idempotent(self, raw_records):
        once = normalize(raw_records)
        twice = normalize(once)
        assert once == twice

    def test_order_preserved(self, raw_records):
        assert [r.feature_id for r in normalize(raw_records)] == ['g1', 'g2', 'g3', 'g4']

    def test_returns_frozen_records(self, raw_records):
        out = normalize(raw_records)
        with pytest.raises(Exception):
            out[0].p_value = 0.5


class TestRecordSources:

    def test_attribute_objects(self):
        @dataclass
        class Row:
            feature_id: str
            p_value: float
            adjusted_p_value: float
            effect_size: float

        out = normalize([Row("g", 0.01, 0.02, -3.0)])
        assert out[0] == FeatureResult("g", 0.01, 0.02, -3.0, direction_score(-3.0, 0.01))

    def test_extra_carried_over(self):
        out = normalize([{'feature_id': 'g', 'p_value': 0.5, 'adjusted_p_value': 0.5,
                          'effect_size': 1.0, 'extra': {'se': 0.3}}])
        assert out[0].extra == {'se': 0.3}
        assert out[0].to_dict()['se'] == 0.3

    def test_from_deseq_style_frame(self):
        df = pd.DataFrame({
            'baseMean': [100.0, 5.0],
            'log2FoldChange': [1.0, -2.0],
            'pvalue': [0.0, 0.04],
            'padj': [0.0, 0.08],
        }, index=pd.Index(['ENSG1', 'ENSG2']))
        out = normalize(results_from_frame(df))
        assert [r.feature_id for r in out] == ['ENSG1', 'ENSG2']
        assert out[0].p_value == P_VALUE_FLOOR
        assert out[1].extra['baseMean'] == 5.0
        assert np.sign(out[1].direction_score) == -1
